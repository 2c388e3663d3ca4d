"""Transcript models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class TranscriptSegment:
    """An ordered, persisted unit of speech attributed to a speaker."""
    meeting_id: str
    sequence: int
    timestamp: float  # Seconds since the start of the meeting capture
    speaker: str
    text: str
    confidence: float = 1.0
    language: str = "auto"
    segment_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class TranscriptEntry:
    """A buffered transcript line; consecutive text from one speaker is merged into it."""
    entry_id: str
    speaker: str
    text: str
    started_at: float
    updated_at: float
    language: str = "auto"
