"""Fan-out of captured microphone frames over pypubsub."""

import logging
from typing import Callable

from pubsub import pub

from ..models.events import AudioEvent

logger = logging.getLogger(__name__)

AUDIO_FRAME_TOPIC = "audio.frame"

FrameListener = Callable[[AudioEvent], None]


class AudioPublisher:
    """Bridges the capture thread to frame listeners.

    The capture controller calls `publish_audio_event` from its reader thread;
    listeners attached with `attach` run on that thread and must hand work to
    their own loop. pypubsub holds listeners weakly, so callers keep a
    reference to what they attach.
    """

    def __init__(self, topic: str = AUDIO_FRAME_TOPIC):
        self.topic = topic
        self.frames_published = 0
        self.bytes_published = 0

    def attach(self, listener: FrameListener) -> None:
        if not pub.isSubscribed(listener, self.topic):
            pub.subscribe(listener, self.topic)

    def detach(self, listener: FrameListener) -> None:
        if pub.isSubscribed(listener, self.topic):
            pub.unsubscribe(listener, self.topic)

    def publish_audio_event(self, audio_event: AudioEvent) -> None:
        # Trailing reads at shutdown may be empty
        if not audio_event.audio_data:
            return
        self.frames_published += 1
        self.bytes_published += len(audio_event.audio_data)
        pub.sendMessage(self.topic, event=audio_event)
        if self.frames_published == 1:
            logger.debug(f"First audio frame published on {self.topic} "
                         f"({len(audio_event.audio_data)} bytes)")
