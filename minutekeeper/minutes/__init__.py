"""Chunked minutes generation, scheduling and progress broadcasting."""

from .engine import ChatCompletionEngine
from .chunk_pipeline import ChunkedMinuteGenerator, parse_chunk_summary, chunk_statuses, overall_progress
from .scheduler import ChunkScheduler
from .progress import GenerationProgressBroadcaster, GenerationRegistry, GenerationObserver
from .generator import MinutesGenerator, render_minutes

__all__ = [
    'ChatCompletionEngine',
    'ChunkedMinuteGenerator',
    'parse_chunk_summary',
    'chunk_statuses',
    'overall_progress',
    'ChunkScheduler',
    'GenerationProgressBroadcaster',
    'GenerationRegistry',
    'GenerationObserver',
    'MinutesGenerator',
    'render_minutes',
]
