"""Event models for pub/sub processing."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any


@dataclass
class AudioEvent:
    """Audio chunk event with metadata."""
    chunk_id: str
    audio_data: bytes
    timestamp: float  # Unix timestamp when chunk was captured
    sequence_number: int
    sample_rate: int = 24000
    channels: int = 1
    chunk_duration_ms: Optional[int] = None  # Duration of this chunk in milliseconds
    final: bool = False  # True if this is the final chunk for the session

    def __post_init__(self):
        """Calculate chunk duration if not provided."""
        if self.chunk_duration_ms is None and self.audio_data:
            # 16-bit audio (2 bytes per sample)
            bytes_per_second = self.sample_rate * self.channels * 2
            duration_seconds = len(self.audio_data) / bytes_per_second
            self.chunk_duration_ms = int(duration_seconds * 1000)


@dataclass
class RecognitionEvent:
    """A normalized speech-recognition event travelling from session to assembler."""
    text: str
    speaker: str
    timestamp: float  # Seconds since the session connected
    is_final: bool = True
    item_id: Optional[str] = None
    confidence: float = 1.0
    language: str = "auto"


@dataclass
class StoreChange:
    """Insert/update notification published by the meeting store."""
    event: str  # "insert" | "update"
    table: str
    meeting_id: str
    record: Any
    timestamp: datetime = field(default_factory=datetime.now)
