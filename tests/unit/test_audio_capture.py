"""Unit tests for AudioCaptureController."""

import io
import wave
import asyncio

import pytest

from minutekeeper.audio import AudioCaptureController, AudioPublisher
from minutekeeper.errors import DeviceUnavailable
from minutekeeper.models import AudioEvent, RecordingState


@pytest.mark.unit
class TestAudioCaptureController:
    """Test cases for AudioCaptureController."""

    def test_initialization(self):
        capture = AudioCaptureController("m1")

        assert capture.sample_rate == 24000
        assert capture.chunk_size == 4096
        assert capture.channels == 1
        assert capture.state is RecordingState.IDLE
        assert capture.session is None

    def test_start_opens_stream_with_fixed_configuration(self, mock_pyaudio):
        capture = AudioCaptureController("m1")

        async def scenario():
            session = await capture.start()
            await capture.stop()
            return session

        session = asyncio.run(scenario())

        assert session.meeting_id == "m1"
        kwargs = mock_pyaudio['instance'].open.call_args.kwargs
        assert kwargs['rate'] == 24000
        assert kwargs['channels'] == 1
        assert kwargs['frames_per_buffer'] == 4096
        assert kwargs['input'] is True

    def test_stop_returns_wav_artifact(self, mock_pyaudio):
        capture = AudioCaptureController("m1")

        async def scenario():
            await capture.start()
            await asyncio.sleep(0.05)
            return await capture.stop()

        artifact = asyncio.run(scenario())

        assert artifact is not None
        assert artifact.meeting_id == "m1"
        assert artifact.mime_type == "audio/wav"
        assert artifact.frame_count > 0
        assert 0.45 < artifact.peak_level <= 0.51
        with wave.open(io.BytesIO(artifact.audio_data), 'rb') as wf:
            assert wf.getframerate() == 24000
            assert wf.getnchannels() == 1
            assert wf.getsampwidth() == 2
            assert wf.getnframes() == artifact.frame_count

    def test_pause_accounting_excludes_paused_time(self, mock_pyaudio, fake_clock):
        capture = AudioCaptureController("m1", clock=fake_clock)

        async def scenario():
            await capture.start()
            fake_clock.advance(10)
            capture.pause()
            fake_clock.advance(5)
            capture.resume()
            fake_clock.advance(15)
            capture.pause()
            fake_clock.advance(3)
            capture.resume()
            fake_clock.advance(2)
            return await capture.stop()

        artifact = asyncio.run(scenario())

        # W = 35, P = 8
        assert artifact.duration_seconds == pytest.approx(27, abs=1)
        assert capture.session.paused_seconds == pytest.approx(8)

    def test_elapsed_excludes_pauses_and_freezes_at_stop(self, mock_pyaudio, fake_clock):
        capture = AudioCaptureController("m1", clock=fake_clock)

        async def scenario():
            await capture.start()
            fake_clock.advance(10)
            capture.pause()
            fake_clock.advance(5)
            during_pause = capture.elapsed_seconds()
            capture.resume()
            fake_clock.advance(20)
            artifact = await capture.stop()
            fake_clock.advance(60)
            return during_pause, artifact

        during_pause, artifact = asyncio.run(scenario())

        assert during_pause == pytest.approx(10)
        assert capture.elapsed_seconds() == pytest.approx(30)
        assert capture.elapsed_seconds() == pytest.approx(artifact.duration_seconds)

    def test_stop_while_paused_excludes_open_pause(self, mock_pyaudio, fake_clock):
        capture = AudioCaptureController("m1", clock=fake_clock)

        async def scenario():
            await capture.start()
            fake_clock.advance(10)
            capture.pause()
            fake_clock.advance(20)
            return await capture.stop()

        artifact = asyncio.run(scenario())

        assert artifact.duration_seconds == pytest.approx(10, abs=1)

    def test_pause_and_resume_are_noops_in_wrong_state(self, mock_pyaudio, fake_clock):
        capture = AudioCaptureController("m1", clock=fake_clock)

        # No session yet
        capture.pause()
        capture.resume()
        assert capture.state is RecordingState.IDLE

        async def scenario():
            await capture.start()
            capture.resume()
            assert capture.state is RecordingState.RECORDING
            capture.pause()
            fake_clock.advance(4)
            capture.pause()
            assert capture.session.paused_at == 0
            capture.resume()
            await capture.stop()

        asyncio.run(scenario())
        assert capture.session.paused_seconds == pytest.approx(4)

    def test_paused_audio_is_not_buffered(self, mock_pyaudio):
        capture = AudioCaptureController("m1")

        async def scenario():
            await capture.start()
            capture.pause()
            with capture.lock:
                capture.frames.clear()
            await asyncio.sleep(0.05)
            return await capture.stop()

        artifact = asyncio.run(scenario())

        assert artifact.frame_count == 0

    def test_double_stop_is_idempotent(self, mock_pyaudio):
        capture = AudioCaptureController("m1")

        async def scenario():
            await capture.start()
            first = await capture.stop()
            second = await capture.stop()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is not None
        assert second is None
        assert mock_pyaudio['instance'].terminate.call_count == 1

    def test_stop_without_session_returns_none(self):
        assert asyncio.run(AudioCaptureController("m1").stop()) is None

    def test_device_unavailable_when_open_fails(self, mock_pyaudio):
        mock_pyaudio['instance'].open.side_effect = OSError("Invalid input device")
        capture = AudioCaptureController("m1")

        with pytest.raises(DeviceUnavailable):
            asyncio.run(capture.start())

        mock_pyaudio['instance'].terminate.assert_called_once()
        assert capture.session is None
        assert None not in AudioCaptureController._claimed_devices

    def test_device_is_exclusive_across_controllers(self, mock_pyaudio):
        first = AudioCaptureController("m1")
        second = AudioCaptureController("m2")

        async def scenario():
            await first.start()
            with pytest.raises(DeviceUnavailable):
                await second.start()
            await first.stop()
            await second.start()
            await second.stop()

        asyncio.run(scenario())

        assert mock_pyaudio['instance'].open.call_count == 2

    def test_clear_releases_device_and_discards_audio(self, mock_pyaudio):
        capture = AudioCaptureController("m1")

        async def scenario():
            await capture.start()
            await asyncio.sleep(0.02)
            await capture.clear()
            return await capture.stop()

        assert asyncio.run(scenario()) is None
        mock_pyaudio['stream'].close.assert_called_once()
        mock_pyaudio['instance'].terminate.assert_called_once()
        assert capture.session is None
        assert capture.frames == []

    def test_recorder_error_releases_device(self, mock_pyaudio):
        mock_pyaudio['stream'].read.side_effect = OSError("Input overflowed")
        capture = AudioCaptureController("m1")

        async def scenario():
            await capture.start()
            capture.recording_thread.join(timeout=1.0)
            return await capture.stop()

        artifact = asyncio.run(scenario())

        assert isinstance(capture.recorder_error, OSError)
        mock_pyaudio['stream'].close.assert_called_once()
        mock_pyaudio['instance'].terminate.assert_called_once()
        assert artifact is not None
        assert artifact.frame_count == 0

    def test_frames_are_published(self, mock_pyaudio):
        received = []

        def listener(event):
            received.append(event)

        publisher = AudioPublisher()
        publisher.attach(listener)
        capture = AudioCaptureController("m1", callback=publisher.publish_audio_event)

        async def scenario():
            await capture.start()
            await asyncio.sleep(0.05)
            await capture.stop()

        asyncio.run(scenario())

        assert received
        assert received[-1].final is True
        assert all(e.sample_rate == 24000 for e in received)
        assert publisher.frames_published == len(received)
        assert publisher.bytes_published == sum(len(e.audio_data) for e in received)

    def test_empty_frames_and_detached_listeners_are_skipped(self, sample_audio_chunk):
        received = []

        def listener(event):
            received.append(event)

        publisher = AudioPublisher()
        publisher.attach(listener)
        publisher.publish_audio_event(AudioEvent(chunk_id="c1", audio_data=b"", timestamp=0.0,
                                                 sequence_number=1, sample_rate=24000, channels=1))
        publisher.publish_audio_event(AudioEvent(chunk_id="c2", audio_data=sample_audio_chunk,
                                                 timestamp=0.1, sequence_number=2, sample_rate=24000,
                                                 channels=1))
        publisher.detach(listener)
        publisher.publish_audio_event(AudioEvent(chunk_id="c3", audio_data=sample_audio_chunk,
                                                 timestamp=0.2, sequence_number=3, sample_rate=24000,
                                                 channels=1))

        assert [e.chunk_id for e in received] == ["c2"]
        assert publisher.frames_published == 2
