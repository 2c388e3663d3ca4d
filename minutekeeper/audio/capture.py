"""Audio capture controller: owns the microphone for one meeting recording."""

import asyncio
import io
import time
import wave
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from threading import Thread, Event
from typing import Optional, List, Callable, Iterator, Set

import numpy as np
import pyaudio

from ..errors import DeviceUnavailable
from ..models import AudioArtifact, AudioEvent, RecordingSession, RecordingState


logger = logging.getLogger(__name__)


@contextmanager
def open_input_stream(sample_rate: int, chunk_size: int, channels: int,
                      format: int, device_index: Optional[int] = None) -> Iterator["pyaudio.Stream"]:
    """Open a PyAudio input stream; the device is released on every exit path."""
    pyaudio_instance = pyaudio.PyAudio()
    stream = None
    try:
        stream = pyaudio_instance.open(
            format=format,
            channels=channels,
            rate=sample_rate,
            input=True,
            frames_per_buffer=chunk_size,
            input_device_index=device_index,
            stream_callback=None
        )
        logger.info(f"Audio stream opened: {sample_rate}Hz, "
                    f"{chunk_size} samples/chunk")
        yield stream
    finally:
        if stream is not None:
            try:
                stream.stop_stream()
            finally:
                stream.close()
        pyaudio_instance.terminate()
        logger.debug("Audio device released")


class AudioCaptureController:
    """Records a meeting from the microphone with pause/resume and a finalized artifact.

    Device I/O happens on a background reader thread; the public API is
    asynchronous and suspends only while the device is acquired or released.
    """

    _claim_lock = threading.Lock()
    _claimed_devices: Set[Optional[int]] = set()

    def __init__(
        self,
        meeting_id: str,
        callback: Optional[Callable[[AudioEvent], None]] = None,
        sample_rate: int = 24000,
        chunk_size: int = 4096,
        channels: int = 1,
        device_index: Optional[int] = None,
        format: int = pyaudio.paInt16,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller.

        Args:
            meeting_id: Meeting the recording belongs to
            callback: Receives every captured AudioEvent while not paused
            sample_rate: Audio sample rate (24kHz for the realtime speech service)
            chunk_size: Size of each audio chunk in samples
            channels: Number of audio channels (1 for mono)
            device_index: PyAudio input device, None for the default device
            format: Audio format (16-bit signed int)
            clock: Monotonic clock used for duration accounting
        """
        self.meeting_id = meeting_id
        self.audio_event_callback = callback
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.device_index = device_index
        self.format = format
        self.clock = clock

        self.session: Optional[RecordingSession] = None
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.ready_event = Event()
        self.recorder_error: Optional[BaseException] = None
        self.stream_opened = False

        self.lock = threading.Lock()
        self.frames: List[bytes] = []
        self.total_chunks = 0
        self._paused = False
        self._holds_device = False

    @property
    def state(self) -> RecordingState:
        return self.session.state if self.session else RecordingState.IDLE

    def elapsed_seconds(self) -> float:
        """Recorded time so far, excluding pauses."""
        if not self.session:
            return 0.0
        return self.session.elapsed_seconds(self.clock())

    async def start(self) -> RecordingSession:
        """Acquire the microphone and begin buffering.

        Raises:
            DeviceUnavailable: The device is denied, missing, or held by another controller
        """
        if self.session and self.session.is_active:
            logger.warning("Recording already in progress")
            return self.session

        self._claim_device()
        self.stop_event.clear()
        self.ready_event.clear()
        self.recorder_error = None
        self.stream_opened = False
        with self.lock:
            self.frames = []
            self.total_chunks = 0
            self._paused = False

        logger.info(f"Starting audio recording for meeting {self.meeting_id}")
        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.ready_event.wait)

        if not self.stream_opened:
            error = self.recorder_error
            await loop.run_in_executor(None, self._join_recording_thread)
            raise DeviceUnavailable(f"Could not access microphone: {error}") from error

        self.session = RecordingSession(
            meeting_id=self.meeting_id,
            started_at=datetime.now(),
            start_clock=self.clock(),
        )
        return self.session

    def pause(self) -> None:
        """Pause buffering; no-op unless recording."""
        if not self.session or self.session.state is not RecordingState.RECORDING:
            return
        with self.lock:
            self._paused = True
        self.session.paused_at = self.clock()
        self.session.state = RecordingState.PAUSED
        logger.info("Recording paused")

    def resume(self) -> None:
        """Resume buffering; no-op unless paused. Accumulates the pause duration."""
        if not self.session or self.session.state is not RecordingState.PAUSED:
            return
        now = self.clock()
        self.session.paused_seconds += now - self.session.paused_at
        self.session.paused_at = None
        self.session.state = RecordingState.RECORDING
        with self.lock:
            self._paused = False
        logger.info(f"Recording resumed (paused total {self.session.paused_seconds:.1f}s)")

    async def stop(self) -> Optional[AudioArtifact]:
        """Stop recording, release the device and return the finalized artifact.

        Returns None when there is no active session, so repeated calls are safe.
        """
        session = self.session
        if not session or not session.is_active:
            logger.debug("No active recording to stop")
            return None

        now = self.clock()
        duration = session.elapsed_seconds(now)
        if session.paused_at is not None:
            session.paused_seconds += now - session.paused_at
            session.paused_at = None
        session.stopped_at = now
        session.state = RecordingState.STOPPED

        logger.info("Stopping audio recording")
        self.stop_event.set()
        await asyncio.get_running_loop().run_in_executor(None, self._join_recording_thread)

        with self.lock:
            frames = self.frames
            self.frames = []
        artifact = self._build_artifact(session, frames, duration)
        session.artifact = artifact
        logger.info(f"Recording stopped. Total chunks: {self.total_chunks}, "
                    f"duration: {duration:.1f}s")
        return artifact

    async def clear(self) -> None:
        """Discard the session and buffered audio, releasing the device."""
        if self.session:
            self.session.state = RecordingState.STOPPED
        self.stop_event.set()
        await asyncio.get_running_loop().run_in_executor(None, self._join_recording_thread)
        with self.lock:
            self.frames = []
        self.session = None
        logger.info("Recording cleared")

    def _claim_device(self) -> None:
        with self._claim_lock:
            if self.device_index in self._claimed_devices:
                raise DeviceUnavailable(
                    f"Input device {self.device_index if self.device_index is not None else 'default'} "
                    f"is already in use by another capture controller")
            self._claimed_devices.add(self.device_index)
            self._holds_device = True

    def _release_device(self) -> None:
        with self._claim_lock:
            if self._holds_device:
                self._claimed_devices.discard(self.device_index)
                self._holds_device = False

    def _join_recording_thread(self) -> None:
        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Recording thread did not stop cleanly")
        self._release_device()

    def _record_continuously(self) -> None:
        """Internal method: continuous recording loop in background thread."""
        try:
            with open_input_stream(self.sample_rate, self.chunk_size, self.channels,
                                   self.format, self.device_index) as stream:
                self.stream_opened = True
                self.ready_event.set()
                while not self.stop_event.is_set():
                    self._handle_chunk(self._read_audio_chunk(stream), final=False)
                # Flush what the device still holds
                with self.lock:
                    paused = self._paused
                if not paused:
                    self._handle_chunk(self._read_audio_chunk(stream), final=True)
        except Exception as e:
            self.recorder_error = e
            logger.error(f"Audio recorder error: {e}")
        finally:
            self.ready_event.set()
            self._release_device()

    def _read_audio_chunk(self, stream: "pyaudio.Stream") -> bytes:
        audio_chunk = stream.read(self.chunk_size, exception_on_overflow=False)
        self.total_chunks += 1
        return audio_chunk

    def _handle_chunk(self, audio_chunk: bytes, final: bool) -> None:
        with self.lock:
            if self._paused:
                return
            self.frames.append(audio_chunk)

        if self.audio_event_callback:
            self.audio_event_callback(AudioEvent(
                chunk_id=f"chunk_{self.total_chunks}",
                audio_data=audio_chunk,
                timestamp=time.time(),
                sequence_number=self.total_chunks,
                sample_rate=self.sample_rate,
                channels=self.channels,
                final=final
            ))

    def _build_artifact(self, session: RecordingSession, frames: List[bytes],
                        duration: float) -> AudioArtifact:
        pcm = b"".join(frames)
        buffer = io.BytesIO()
        with wave.open(buffer, 'wb') as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(2)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)

        peak_level = 0.0
        if pcm:
            samples = np.frombuffer(pcm[:len(pcm) - len(pcm) % 2], dtype=np.int16)
            if samples.size:
                peak_level = float(np.abs(samples.astype(np.int32)).max()) / 32768.0

        return AudioArtifact(
            meeting_id=session.meeting_id,
            audio_data=buffer.getvalue(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            duration_seconds=duration,
            frame_count=len(pcm) // (2 * self.channels),
            started_at=session.started_at,
            peak_level=peak_level,
        )
