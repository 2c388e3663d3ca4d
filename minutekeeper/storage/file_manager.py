"""File management module for audio artifacts and meeting data."""

import logging
from pathlib import Path

from ..models import AudioArtifact

logger = logging.getLogger(__name__)


class FileManager:
    """Manages the data directory: per-meeting folders, audio artifacts and logs."""

    def __init__(self, data_dir: str = "./data"):
        """Initialize file manager with data directory.

        Args:
            data_dir: Base directory for storing all data
        """
        self.data_dir = Path(data_dir)
        self.meetings_dir = self.data_dir / "meetings"
        self.logs_dir = self.data_dir / "logs"

        # Create directory structure
        self._ensure_directories()

        logger.info(f"FileManager initialized with data_dir: {self.data_dir}")

    def _ensure_directories(self) -> None:
        """Ensure all required directories exist."""
        for directory in [self.data_dir, self.meetings_dir, self.logs_dir]:
            directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Ensured directory exists: {directory}")

    def get_meeting_path(self, meeting_id: str) -> Path:
        """Get full path to a meeting directory (created on demand)."""
        meeting_path = self.meetings_dir / meeting_id
        meeting_path.mkdir(parents=True, exist_ok=True)
        return meeting_path

    def save_audio_artifact(self, artifact: AudioArtifact) -> str:
        """Write a finalized recording to the meeting directory.

        Args:
            artifact: Finalized audio artifact (WAV bytes)

        Returns:
            Full path to the saved WAV file; also stored on the artifact
        """
        timestamp = artifact.started_at.strftime("%Y%m%d_%H%M%S")
        audio_file_path = self.get_meeting_path(artifact.meeting_id) / f"recording_{timestamp}.wav"

        with open(audio_file_path, 'wb') as f:
            f.write(artifact.audio_data)

        artifact.file_path = str(audio_file_path)
        logger.info(f"Audio artifact saved: {audio_file_path} "
                    f"({len(artifact.audio_data)} bytes, {artifact.duration_seconds:.1f}s)")
        return artifact.file_path

