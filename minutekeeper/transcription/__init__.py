"""Realtime transcription and transcript assembly module."""

from .assembler import TranscriptAssembler, clean_transcript
from .realtime import RealtimeTranscriptionSession
from .realtime_client import OpenAIRealtimeClient, session_update_event

__all__ = [
    'TranscriptAssembler',
    'clean_transcript',
    'RealtimeTranscriptionSession',
    'OpenAIRealtimeClient',
    'session_update_event',
]
