"""Meeting context model."""

import hashlib
import uuid
from dataclasses import dataclass
from typing import Optional


@dataclass
class MeetingInfo:
    """Context about a meeting used to prompt the summarization service."""
    meeting_id: str
    title: str = "N/A"
    agenda: Optional[str] = None
    description: Optional[str] = None


def normalize_meeting_id(raw_id: str) -> str:
    """Return `raw_id` if it is already a UUID, else a stable UUID derived from it."""
    raw_id = str(raw_id)
    try:
        return str(uuid.UUID(raw_id))
    except ValueError:
        digest = hashlib.sha256(raw_id.encode("utf-8")).digest()
        return str(uuid.UUID(bytes=digest[:16], version=4))
