"""Service layer for MinuteKeeper."""

from .live_meeting import LiveMeetingService

__all__ = ['LiveMeetingService']
