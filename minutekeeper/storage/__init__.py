"""Storage layer: meeting row store and data directory management."""

from .store import MeetingStore, JsonMeetingStore, Subscription
from .file_manager import FileManager

__all__ = [
    "MeetingStore",
    "JsonMeetingStore",
    "Subscription",
    "FileManager",
]
