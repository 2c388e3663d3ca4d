"""Pytest configuration and fixtures for MinuteKeeper tests."""

import json
import time
import asyncio
import logging
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, patch

import aiohttp
import numpy as np
import pytest
from pubsub import pub

from minutekeeper.audio.capture import AudioCaptureController
from minutekeeper.models import TranscriptSegment
from minutekeeper.storage import MeetingStore


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests wiring several components")


@pytest.fixture(autouse=True)
def reset_global_state():
    """pypubsub and the device claims are process-wide."""
    yield
    pub.unsubAll()
    AudioCaptureController._claimed_devices.clear()


@pytest.fixture
def temp_data_dir(tmp_path):
    """Temporary directory for test data."""
    return str(tmp_path)


@pytest.fixture
def sample_audio_chunk():
    """One 4096-sample chunk of a 440 Hz sine at 24 kHz, half scale."""
    t = np.linspace(0, 4096 / 24000, 4096, False)
    wave_data = 0.5 * np.sin(2 * np.pi * 440 * t)
    return (wave_data * 32767).astype(np.int16).tobytes()


@pytest.fixture
def mock_pyaudio(sample_audio_chunk):
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        def read(frames, exception_on_overflow=True):
            time.sleep(0.002)
            return sample_audio_chunk

        mock_stream.read.side_effect = read
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None

        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def store():
    store = MeetingStore()
    yield store
    store.close()


class FakeEngine:
    """Summarization engine returning canned responses in order."""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def send_messages(self, messages, temperature=0.3, max_tokens=2000, response_format=None):
        self.calls.append({"messages": messages, "temperature": temperature,
                           "response_format": response_format})
        response = self.responses.pop(0) if len(self.responses) > 1 else (
            self.responses[0] if self.responses else default_summary_json())
        if isinstance(response, Exception):
            raise response
        return response


def default_summary_json(summary: str = "Segment summary") -> str:
    return json.dumps({
        "summary": summary,
        "key_points": ["Point A"],
        "decisions": ["Decision A"],
        "action_items": ["Action A"],
    })


@pytest.fixture
def fake_engine():
    return FakeEngine()


def make_segment(meeting_id: str, sequence: int, timestamp: float, text: str,
                 speaker: str = "User") -> TranscriptSegment:
    return TranscriptSegment(
        meeting_id=meeting_id,
        sequence=sequence,
        timestamp=timestamp,
        speaker=speaker,
        text=text,
        segment_id=f"seg-{sequence}",
    )


class FakeWebSocket:
    """Stands in for aiohttp.ClientWebSocketResponse."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.incoming: asyncio.Queue = asyncio.Queue()

    def push(self, event: Dict[str, Any]) -> None:
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(event)))

    def push_text(self, data: str) -> None:
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def push_error(self, message: str) -> None:
        self._error = Exception(message)
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None))

    def exception(self):
        return getattr(self, "_error", None)

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self) -> bool:
        if not self.closed:
            self.closed = True
            self.close_code = 1000
            self.incoming.put_nowait(None)
        return True

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self.incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeRealtimeClient:
    """Realtime client whose credential exchange and handshake are scripted.

    `outcomes` holds, per connection attempt, either None (success) or an
    exception to raise from create_client_secret.
    """

    transcription_model = "whisper-1"

    def __init__(self, outcomes: Optional[List[Optional[Exception]]] = None):
        self.outcomes = list(outcomes or [])
        self.attempts = 0
        self.sockets: List[FakeWebSocket] = []
        self.handshake_gate: Optional[asyncio.Event] = None

    async def create_client_secret(self, language: str = "auto") -> str:
        self.attempts += 1
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if outcome is not None:
            raise outcome
        return f"secret-{self.attempts}"

    async def open_connection(self, client_secret: str) -> FakeWebSocket:
        if self.handshake_gate is not None:
            await self.handshake_gate.wait()
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    async def close(self) -> None:
        pass


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=24000):
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-1, 1, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        return (wave_data * 32767).astype(np.int16).tobytes()

    return generate_audio


@pytest.fixture
def engine_factory():
    return FakeEngine


@pytest.fixture
def summary_json():
    return default_summary_json


@pytest.fixture
def segment_factory():
    return make_segment


@pytest.fixture
def realtime_client_factory():
    return FakeRealtimeClient
