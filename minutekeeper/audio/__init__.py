"""Audio capture and frame publishing module."""

from .capture import AudioCaptureController, open_input_stream
from .audio_pub import AudioPublisher, AUDIO_FRAME_TOPIC

__all__ = [
    'AudioCaptureController',
    'open_input_stream',
    'AudioPublisher',
    'AUDIO_FRAME_TOPIC',
]
