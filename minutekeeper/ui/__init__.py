"""Terminal user interface for MinuteKeeper."""

from .progress_display import ProgressDisplay

__all__ = ['ProgressDisplay']
