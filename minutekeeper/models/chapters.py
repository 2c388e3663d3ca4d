"""Meeting chapter models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class ChapterType(Enum):
    INTRO = "intro"
    DISCUSSION = "discussion"
    DECISION = "decision"
    ACTION = "action"
    CONCLUSION = "conclusion"


@dataclass(frozen=True)
class ChapterCandidate:
    """Classification of a transcript window before the persistence checks."""
    title: str
    type: ChapterType
    confidence: float


@dataclass
class Chapter:
    """A labeled point on the meeting timeline."""
    meeting_id: str
    title: str
    timestamp: float  # Elapsed seconds
    type: ChapterType
    confidence: float
    segment_id: Optional[str] = None  # First transcript segment of the window
    chapter_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
