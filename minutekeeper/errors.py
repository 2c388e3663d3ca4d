"""Exception hierarchy for the live capture and minutes pipeline."""

import re
from typing import Optional


RATE_LIMIT_PATTERN = re.compile(r"429|rate limit|Too Many Requests", re.IGNORECASE)


class MinuteKeeperError(Exception):
    """Base class for all MinuteKeeper errors."""


class DeviceUnavailable(MinuteKeeperError):
    """The microphone could not be acquired for a capture session."""


class TransportError(MinuteKeeperError):
    """Failure of the realtime transcription connection."""

    rate_limited = False

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class RateLimitedError(TransportError):
    """The speech service rejected us with a 429 / rate limit signature."""

    rate_limited = True


class GenericTransportError(TransportError):
    """Any transport failure that is not a rate limit."""


class CredentialExchangeError(GenericTransportError):
    """The short-lived credential could not be obtained."""


class SummarizationError(MinuteKeeperError):
    """The generative summarization call itself failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SummarizationParseError(MinuteKeeperError):
    """The summarization response was not the requested structure."""

    def __init__(self, message: str, raw_text: str):
        super().__init__(message)
        self.raw_text = raw_text


class GenerationFailed(MinuteKeeperError):
    """A minutes generation run reached the terminal failed state."""

    def __init__(self, meeting_id: str, message: str):
        super().__init__(message)
        self.meeting_id = meeting_id
        self.message = message


class GenerationInProgress(MinuteKeeperError):
    """A non-terminal generation already exists for the meeting."""


class InvalidProgressTransition(MinuteKeeperError):
    """A progress update would move the state machine backwards."""


def is_rate_limit_message(message: str, status: Optional[int] = None) -> bool:
    if status == 429:
        return True
    return bool(message) and RATE_LIMIT_PATTERN.search(message) is not None


def classify_transport_error(message: str, status: Optional[int] = None) -> TransportError:
    """Map a raw transport failure to RateLimitedError or GenericTransportError."""
    if is_rate_limit_message(message, status):
        return RateLimitedError(message, status=status)
    return GenericTransportError(message, status=status)
