"""Minute chunk and minutes document models."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


def chunk_index_for(start_seconds: float, chunk_duration_minutes: int) -> int:
    """Chunk index of a window: floor(start / (minutes * 60))."""
    if chunk_duration_minutes <= 0:
        raise ValueError("chunk_duration_minutes must be positive")
    if start_seconds < 0:
        raise ValueError("start_seconds must not be negative")
    return int(math.floor(start_seconds / (chunk_duration_minutes * 60)))


class ChunkSummary(BaseModel):
    """Structured response requested from the summarization service."""

    summary: str = ""
    key_points: List[str] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)


@dataclass
class MinuteChunk:
    """Summarized result of one fixed time window of a meeting transcript."""
    meeting_id: str
    chunk_index: int
    start_time: float  # Elapsed seconds, inclusive
    end_time: float    # Elapsed seconds, exclusive
    transcript_text: str
    summary: str
    key_points: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class ChunkStatus:
    """Completion state of one window of a recording."""
    chunk_index: int
    start_time: float
    end_time: float
    status: str  # "completed" | "pending"
    summary: Optional[str] = None
    generated_at: Optional[datetime] = None


@dataclass
class MeetingMinutes:
    """Final minutes document stitched from the chunk results."""
    meeting_id: str
    content: str
    chunk_count: int
    generation_id: str
    generated_at: datetime = field(default_factory=datetime.now)
