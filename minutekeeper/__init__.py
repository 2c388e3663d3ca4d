"""MinuteKeeper - live meeting capture and incremental minutes."""

__version__ = "0.1.0"
