"""Minutes generation progress models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class GenerationStatus(Enum):
    """States of one minutes generation run, in order."""
    INITIALIZING = "initializing"
    FETCHING_DATA = "fetching_data"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.COMPLETED, GenerationStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the forward order; failed ranks with completed."""
        if self is GenerationStatus.FAILED:
            return _ORDER.index(GenerationStatus.COMPLETED)
        return _ORDER.index(self)


_ORDER = [
    GenerationStatus.INITIALIZING,
    GenerationStatus.FETCHING_DATA,
    GenerationStatus.ANALYZING,
    GenerationStatus.GENERATING,
    GenerationStatus.FINALIZING,
    GenerationStatus.COMPLETED,
]

STATUS_MESSAGES = {
    GenerationStatus.INITIALIZING: "Initializing generation...",
    GenerationStatus.FETCHING_DATA: "Fetching meeting data...",
    GenerationStatus.ANALYZING: "Analyzing transcription...",
    GenerationStatus.GENERATING: "Generating minutes with AI...",
    GenerationStatus.FINALIZING: "Finalizing document...",
    GenerationStatus.COMPLETED: "Minutes generated successfully!",
    GenerationStatus.FAILED: "Generation failed",
}


@dataclass
class GenerationProgress:
    """One persisted progress record of a generation run."""
    meeting_id: str
    generation_id: str
    status: GenerationStatus
    percentage: int
    current_step: Optional[str] = None
    error_message: Optional[str] = None
    estimated_seconds: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
