"""Unit tests for MinutesGenerator and minutes rendering."""

import asyncio
from unittest.mock import patch

import pytest

from minutekeeper.errors import GenerationFailed, GenerationInProgress, SummarizationError
from minutekeeper.minutes import (
    ChunkedMinuteGenerator,
    GenerationObserver,
    GenerationProgressBroadcaster,
    GenerationRegistry,
    MinutesGenerator,
    render_minutes,
)
from minutekeeper.models import GenerationStatus, MeetingInfo, MinuteChunk


def build_generator(store, engine, chunk_duration_seconds=60):
    pipeline = ChunkedMinuteGenerator(store, engine)
    broadcaster = GenerationProgressBroadcaster(store)
    return MinutesGenerator(store, pipeline, broadcaster, chunk_duration_seconds=chunk_duration_seconds)


@pytest.mark.unit
class TestMinutesGenerator:
    """Generation runs."""

    def test_generates_missing_windows_and_saves_minutes(self, store, engine_factory, summary_json,
                                                         segment_factory):
        store.put_meeting(MeetingInfo(meeting_id="m1", title="Roadmap", agenda="Q3 goals"))
        store.append_segment(segment_factory("m1", 0, 5.0, "Welcome."))
        store.append_segment(segment_factory("m1", 1, 70.0, "Budget talk."))
        store.append_segment(segment_factory("m1", 2, 190.0, "Wrap up."))
        # Window 1 already summarized during the meeting
        store.upsert_chunk(MinuteChunk(meeting_id="m1", chunk_index=1, start_time=60, end_time=120,
                                       transcript_text="User: Budget talk.", summary="Earlier",
                                       decisions=["Raise budget"]))
        engine = engine_factory([summary_json("First"), summary_json("Last")])

        minutes = asyncio.run(build_generator(store, engine).generate("m1"))

        # Window 2 has no speech and is skipped
        assert [c.chunk_index for c in store.list_chunks("m1")] == [0, 1, 3]
        assert len(engine.calls) == 2
        assert minutes.chunk_count == 3
        assert store.get_minutes("m1") is minutes
        assert "# Meeting Minutes: Roadmap" in minutes.content
        assert "## Agenda\nQ3 goals" in minutes.content
        assert "### 1:00 - 2:00\nEarlier" in minutes.content
        assert "- Raise budget" in minutes.content
        assert "- [ ] Action A" in minutes.content

        records = store.list_progress("m1", minutes.generation_id)
        assert [r.percentage for r in records] == [0, 10, 25, 30, 57, 85, 90, 100]
        assert records[-1].status is GenerationStatus.COMPLETED
        assert records[4].current_step == "Generating minutes with AI... (1/2 chunks)"
        assert records[3].estimated_seconds == 30

    def test_no_transcript_fails_with_message(self, store, fake_engine):
        with pytest.raises(GenerationFailed) as exc_info:
            asyncio.run(build_generator(store, fake_engine).generate("m1"))

        assert exc_info.value.message == "No transcription available for this meeting"
        latest = store.latest_progress("m1")
        assert latest.status is GenerationStatus.FAILED
        assert latest.error_message == "No transcription available for this meeting"
        assert latest.percentage == 10

    def test_service_failure_surfaces_verbatim(self, store, engine_factory, segment_factory):
        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))
        engine = engine_factory([SummarizationError("Rate limit exceeded. Please try again later.", status=429)])

        with pytest.raises(GenerationFailed):
            asyncio.run(build_generator(store, engine).generate("m1"))

        latest = store.latest_progress("m1")
        assert latest.error_message == "Rate limit exceeded. Please try again later."
        assert latest.percentage == 30
        assert store.get_minutes("m1") is None

    def test_retry_after_failure_is_a_new_generation(self, store, engine_factory, summary_json,
                                                    segment_factory):
        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))
        engine = engine_factory([SummarizationError("boom"), summary_json("ok")])
        generator = build_generator(store, engine)

        with pytest.raises(GenerationFailed):
            asyncio.run(generator.generate("m1"))
        minutes = asyncio.run(generator.generate("m1"))

        failed_id = store.list_progress("m1")[0].generation_id
        assert minutes.generation_id != failed_id
        assert store.latest_progress("m1").status is GenerationStatus.COMPLETED

    def test_concurrent_generation_rejected(self, store, fake_engine, segment_factory):
        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))
        generator = build_generator(store, fake_engine)
        generator.broadcaster.start("m1")

        with pytest.raises(GenerationInProgress):
            asyncio.run(generator.generate("m1"))

        # The running generation is left untouched
        assert store.latest_progress("m1").status is GenerationStatus.INITIALIZING

    def test_failing_observer_does_not_block_the_meeting(self, store, engine_factory, summary_json,
                                                         segment_factory):
        class BrokenDisplay(GenerationObserver):
            def on_update(self, progress):
                raise RuntimeError("display glitch")

        class Counter(GenerationObserver):
            def __init__(self):
                self.completed = 0

            def on_completed(self, progress):
                self.completed += 1

        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))
        registry = GenerationRegistry(store, schedule=lambda delay, callback: None)
        counter = Counter()
        registry.add_observer(BrokenDisplay())
        registry.add_observer(counter)
        generator = build_generator(store, engine_factory([summary_json("first"), summary_json("second")]))

        asyncio.run(generator.generate("m1"))
        asyncio.run(generator.generate("m1"))

        assert store.latest_progress("m1").status is GenerationStatus.COMPLETED
        assert counter.completed == 2
        registry.close()

    def test_failure_while_starting_is_recorded(self, store, fake_engine, segment_factory):
        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))
        generator = build_generator(store, fake_engine)
        insert_progress = store.insert_progress
        calls = []

        def failing_first_insert(progress):
            calls.append(progress.status)
            if len(calls) == 1:
                raise OSError("disk full")
            return insert_progress(progress)

        with patch.object(store, "insert_progress", side_effect=failing_first_insert):
            with pytest.raises(GenerationFailed) as exc_info:
                asyncio.run(generator.generate("m1"))

        assert exc_info.value.message == "disk full"
        latest = store.latest_progress("m1")
        assert latest.status is GenerationStatus.FAILED
        assert latest.error_message == "disk full"
        assert not generator.broadcaster.is_running("m1")

        minutes = asyncio.run(generator.generate("m1"))
        assert minutes.chunk_count == 1

    def test_cancellation_records_failure(self, store, segment_factory):
        store.append_segment(segment_factory("m1", 0, 5.0, "Hello."))

        class SlowEngine:
            async def send_messages(self, *args, **kwargs):
                await asyncio.sleep(10)

        generator = build_generator(store, SlowEngine())

        async def scenario():
            task = asyncio.create_task(generator.generate("m1"))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())

        latest = store.latest_progress("m1")
        assert latest.status is GenerationStatus.FAILED
        assert latest.error_message == "Generation cancelled"


@pytest.mark.unit
class TestRenderMinutes:
    """Markdown rendering."""

    def test_empty_sections(self):
        content = render_minutes(MeetingInfo(meeting_id="m1"), [])

        assert content.startswith("# Meeting Minutes: N/A")
        assert "## Agenda" not in content
        assert content.count("- None recorded") == 2
