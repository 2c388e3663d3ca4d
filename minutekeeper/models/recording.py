"""Recording session models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class RecordingState(Enum):
    """Lifecycle state of a recording session."""
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass
class AudioArtifact:
    """Finalized audio produced when a recording session stops."""
    meeting_id: str
    audio_data: bytes  # Complete WAV file
    sample_rate: int
    channels: int
    duration_seconds: float  # Wall clock minus paused time
    frame_count: int
    started_at: datetime
    peak_level: float = 0.0
    mime_type: str = "audio/wav"
    file_path: Optional[str] = None


@dataclass
class RecordingSession:
    """One recording attempt for a meeting, owned by a single capture controller."""
    meeting_id: str
    started_at: datetime
    start_clock: float  # Monotonic clock reading at start
    state: RecordingState = RecordingState.RECORDING
    paused_seconds: float = 0.0
    paused_at: Optional[float] = None
    stopped_at: Optional[float] = None
    artifact: Optional[AudioArtifact] = None

    @property
    def is_active(self) -> bool:
        return self.state in (RecordingState.RECORDING, RecordingState.PAUSED)

    def elapsed_seconds(self, now: float) -> float:
        """Elapsed recording time excluding paused time, as of clock reading `now`."""
        if self.stopped_at is not None:
            now = min(now, self.stopped_at)
        paused = self.paused_seconds
        if self.paused_at is not None:
            paused += now - self.paused_at
        return max(0.0, now - self.start_clock - paused)
