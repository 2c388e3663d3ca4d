"""Live meeting service: capture, transcription, chapters and chunked minutes."""

import asyncio
import logging
from typing import Callable, List, Optional

from ..audio import AUDIO_FRAME_TOPIC, AudioCaptureController, AudioPublisher
from ..chapters import ChapterSegmentationEngine
from ..config import MinuteKeeperConfig
from ..errors import GenerationFailed, GenerationInProgress, RateLimitedError, TransportError
from ..minutes import (
    ChatCompletionEngine,
    ChunkedMinuteGenerator,
    ChunkScheduler,
    GenerationProgressBroadcaster,
    GenerationRegistry,
    MinutesGenerator,
)
from ..models import AudioArtifact, AudioEvent, MeetingInfo, MeetingMinutes, StoreChange, normalize_meeting_id
from ..storage import FileManager, MeetingStore, Subscription
from ..storage.store import SEGMENTS
from ..transcription import OpenAIRealtimeClient, RealtimeTranscriptionSession, TranscriptAssembler

logger = logging.getLogger(__name__)


class LiveMeetingService:
    """Runs one live meeting at a time and generates its minutes."""

    def __init__(
        self,
        config: MinuteKeeperConfig,
        store: MeetingStore,
        file_manager: FileManager,
        realtime_client: OpenAIRealtimeClient,
        engine: ChatCompletionEngine,
        registry: Optional[GenerationRegistry] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ):
        """Initialize the service.

        Args:
            config: Application configuration
            store: Row store shared by every component
            file_manager: Writes finalized recordings
            realtime_client: Realtime speech API client
            engine: Summarization engine
            registry: Process-wide generation registry, if observers are attached
            on_error: Receives surfaced transcription and chunk errors
        """
        self.config = config
        self.store = store
        self.file_manager = file_manager
        self.realtime_client = realtime_client
        self.registry = registry
        self.on_error = on_error

        self.settings = config.minute_generation_settings()
        self.broadcaster = GenerationProgressBroadcaster(store)
        self.pipeline = ChunkedMinuteGenerator(store, engine)
        self.generator = MinutesGenerator(
            store, self.pipeline, self.broadcaster,
            chunk_duration_seconds=self.settings.chunk_duration_seconds)
        self.chapter_engine = ChapterSegmentationEngine(
            store, min_confidence=config.get('chapters.min_confidence', 0.7))
        self.chapter_window = config.get('chapters.window_segments', 5)
        self.audio_publisher = AudioPublisher(AUDIO_FRAME_TOPIC)

        self.meeting_id: Optional[str] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.capture: Optional[AudioCaptureController] = None
        self.session: Optional[RealtimeTranscriptionSession] = None
        self.assembler: Optional[TranscriptAssembler] = None
        self.scheduler: Optional[ChunkScheduler] = None
        self.chapter_subscription: Optional[Subscription] = None
        self.generation_task: Optional[asyncio.Task] = None
        self.errors: List[Exception] = []

    @property
    def is_running(self) -> bool:
        return self.capture is not None

    async def start(self, meeting_id: str, title: Optional[str] = None,
                    agenda: Optional[str] = None) -> str:
        """Start capturing and transcribing a meeting; returns the normalized meeting id.

        Raises:
            DeviceUnavailable: The microphone could not be acquired
            TransportError: The realtime transcription session could not connect
        """
        if self.is_running:
            raise RuntimeError(f"Meeting {self.meeting_id} is already being captured")

        meeting_id = normalize_meeting_id(meeting_id)
        if self.store.get_meeting(meeting_id) is None or title or agenda:
            self.store.put_meeting(MeetingInfo(meeting_id=meeting_id, title=title or "N/A", agenda=agenda))

        self.meeting_id = meeting_id
        self.loop = asyncio.get_running_loop()
        self.errors = []

        channel = asyncio.Queue(maxsize=self.config.get('transcription.channel_size', 256))
        self.assembler = TranscriptAssembler(
            self.store, meeting_id, channel,
            merge_gap_seconds=self.config.get('transcription.merge_gap_seconds'))
        self.capture = AudioCaptureController(
            meeting_id,
            callback=self.audio_publisher.publish_audio_event,
            sample_rate=self.config.get('audio.sample_rate', 24000),
            chunk_size=self.config.get('audio.chunk_size', 4096),
            channels=self.config.get('audio.channels', 1),
            device_index=self.config.get('audio.device_index'),
        )
        self.session = RealtimeTranscriptionSession(
            self.realtime_client, channel,
            on_error=self._on_transport_error,
            on_recovered=lambda: logger.info("Transcription recovered after rate limit"),
            on_rate_limited=self._on_rate_limited,
            language=self.config.get('transcription.language', 'auto'),
            backoff_seconds=self.config.get('transcription.reconnect_backoff_seconds', 10),
            max_reconnect_attempts=self.config.get('transcription.max_reconnect_attempts', 1),
            backoff_multiplier=self.config.get('transcription.backoff_multiplier', 2.0),
            # Event timestamps share the artifact's time base, which excludes pauses
            clock=self.capture.elapsed_seconds,
        )

        try:
            await self.capture.start()
            await self.session.connect(meeting_id)
        except Exception:
            await self._teardown(discard_audio=True)
            raise

        self.assembler.start()
        self.chapter_subscription = self.store.subscribe(SEGMENTS, meeting_id, self._on_segment)
        self.scheduler = ChunkScheduler(
            self.store, self.pipeline, meeting_id, self.settings.chunk_duration_seconds,
            on_error=lambda index, error: self._surface(error))
        self.scheduler.start(self.loop)
        self.audio_publisher.attach(self._on_audio_frame)

        logger.info(f"Live meeting {meeting_id} started")
        return meeting_id

    def pause(self) -> None:
        if self.capture:
            self.capture.pause()

    def resume(self) -> None:
        if self.capture:
            self.capture.resume()

    async def send_text(self, text: str) -> None:
        if self.session:
            await self.session.send_text(text)

    async def stop(self) -> Optional[AudioArtifact]:
        """Stop the meeting: finalize audio, drain transcript, flush chunks.

        Starts a generation run afterwards when auto-generation is enabled.
        """
        if not self.is_running:
            return None
        meeting_id = self.meeting_id

        artifact = await self.capture.stop()
        await self._teardown(discard_audio=False)

        if artifact is not None:
            self.file_manager.save_audio_artifact(artifact)

        if self.settings.auto_generate_enabled:
            if self._generation_running(meeting_id):
                logger.info(f"Generation already in progress for {meeting_id}; auto-generate skipped")
            else:
                self.generation_task = asyncio.create_task(self._auto_generate(meeting_id))

        logger.info(f"Live meeting {meeting_id} stopped")
        return artifact

    async def generate_minutes(self, meeting_id: str) -> MeetingMinutes:
        """Run a generation now.

        Raises:
            GenerationInProgress: A generation for the meeting is still running
            GenerationFailed: The run failed; the message is the failure reason
        """
        return await self.generator.generate(normalize_meeting_id(meeting_id))

    async def _auto_generate(self, meeting_id: str) -> Optional[MeetingMinutes]:
        try:
            return await self.generator.generate(meeting_id)
        except GenerationInProgress as e:
            logger.info(f"Auto-generate skipped: {e}")
        except GenerationFailed as e:
            # Already surfaced to observers through the failed progress record
            logger.error(f"Auto-generated minutes failed for {meeting_id}: {e.message}")
        return None

    def _generation_running(self, meeting_id: str) -> bool:
        if self.registry is not None and self.registry.is_generating(meeting_id):
            return True
        latest = self.store.latest_progress(meeting_id)
        return latest is not None and not latest.is_terminal

    async def _teardown(self, discard_audio: bool) -> None:
        self.audio_publisher.detach(self._on_audio_frame)
        if discard_audio and self.capture is not None:
            await self.capture.clear()
        if self.session is not None:
            await self.session.disconnect()
        if self.assembler is not None:
            await self.assembler.stop()
        if self.chapter_subscription is not None:
            self.chapter_subscription.unsubscribe()
            self.chapter_subscription = None
        if self.scheduler is not None:
            await self.scheduler.flush(None if discard_audio else self._recorded_seconds())
            self.scheduler.shutdown()
            self.scheduler = None
        self.capture = None
        self.session = None
        self.assembler = None

    def _recorded_seconds(self) -> Optional[float]:
        session = self.capture.session if self.capture else None
        if session is None or session.artifact is None:
            return None
        return session.artifact.duration_seconds

    def _on_audio_frame(self, event: AudioEvent) -> None:
        # Runs on the capture thread
        session, loop = self.session, self.loop
        if session is None or loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(session.send_audio(event.audio_data), loop)

    def _on_segment(self, change: StoreChange) -> None:
        window = self.store.list_segments(change.meeting_id)[-self.chapter_window:]
        self.chapter_engine.process(change.meeting_id, window)

    def _on_rate_limited(self, error: RateLimitedError, delay: float) -> None:
        logger.warning(f"Transcription paused by rate limit; retrying in {delay:.0f}s")

    def _on_transport_error(self, error: TransportError) -> None:
        self._surface(error)

    def _surface(self, error: Exception) -> None:
        self.errors.append(error)
        if self.on_error:
            self.on_error(error)
