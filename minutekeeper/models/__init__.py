"""Data models for the MinuteKeeper application."""

from .recording import RecordingState, RecordingSession, AudioArtifact
from .events import AudioEvent, RecognitionEvent, StoreChange
from .transcript import TranscriptSegment, TranscriptEntry
from .minutes import MinuteChunk, ChunkSummary, ChunkStatus, MeetingMinutes, chunk_index_for
from .progress import GenerationStatus, GenerationProgress
from .chapters import ChapterType, Chapter, ChapterCandidate
from .meeting import MeetingInfo, normalize_meeting_id

__all__ = [
    "RecordingState",
    "RecordingSession",
    "AudioArtifact",
    # Events
    "AudioEvent",
    "RecognitionEvent",
    "StoreChange",
    # Transcript
    "TranscriptSegment",
    "TranscriptEntry",
    # Minutes
    "MinuteChunk",
    "ChunkSummary",
    "ChunkStatus",
    "MeetingMinutes",
    "chunk_index_for",
    "GenerationStatus",
    "GenerationProgress",
    # Chapters
    "ChapterType",
    "Chapter",
    "ChapterCandidate",
    "MeetingInfo",
    "normalize_meeting_id",
]
