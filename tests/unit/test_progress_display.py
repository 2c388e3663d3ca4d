"""Unit tests for the console progress display."""

import io

import pytest
from rich.console import Console

from minutekeeper.minutes import GenerationProgressBroadcaster, GenerationRegistry
from minutekeeper.models import GenerationStatus
from minutekeeper.ui import ProgressDisplay
from minutekeeper.ui.progress_display import format_remaining


def quiet_console():
    return Console(file=io.StringIO(), force_terminal=False, width=100)


@pytest.mark.unit
class TestFormatRemaining:

    @pytest.mark.parametrize("seconds,expected", [
        (None, ""),
        (0, ""),
        (45, "~45s remaining"),
        (60, "~1m remaining"),
        (61, "~2m remaining"),
    ])
    def test_format(self, seconds, expected):
        assert format_remaining(seconds) == expected


@pytest.mark.unit
class TestProgressDisplay:
    """ProgressDisplay as a registry observer."""

    def test_tracks_generation_and_announces_completion_once(self, store):
        console = quiet_console()
        display = ProgressDisplay(console=console, bell=False)
        registry = GenerationRegistry(store, schedule=lambda delay, callback: callback())
        registry.add_observer(display)
        broadcaster = GenerationProgressBroadcaster(store)

        broadcaster.start("m1")
        broadcaster.advance("m1", GenerationStatus.GENERATING, 40, estimated_seconds=30)
        task_id = display.tasks["m1"]
        assert display.progress.tasks[0].completed == 40
        assert display.progress.tasks[0].fields["remaining"] == "~30s remaining"
        broadcaster.complete("m1")
        registry.refresh("m1")

        assert display.completions == 1
        assert "m1" not in display.tasks
        assert task_id not in [t.id for t in display.progress.tasks]
        assert "Minutes ready for meeting m1" in console.file.getvalue()
        registry.close()

    def test_failure_message_is_printed(self, store):
        console = quiet_console()
        display = ProgressDisplay(console=console, bell=False)
        registry = GenerationRegistry(store, schedule=lambda delay, callback: None)
        registry.add_observer(display)
        broadcaster = GenerationProgressBroadcaster(store)

        broadcaster.start("m1")
        broadcaster.fail("m1", "Rate limit exceeded. Please try again later.")

        assert "Generation failed: Rate limit exceeded. Please try again later." in console.file.getvalue()
        assert display.completions == 0
        registry.close()

    def test_context_manager_starts_and_stops(self):
        display = ProgressDisplay(console=quiet_console(), bell=False)

        with display as entered:
            assert entered is display
            assert display.progress.live.is_started

        assert not display.progress.live.is_started
