"""End-to-end minutes generation run driven through the progress state machine."""

import asyncio
import logging
from typing import List, Sequence

from ..errors import GenerationFailed, GenerationInProgress
from ..models import GenerationStatus, MeetingInfo, MeetingMinutes, MinuteChunk
from ..storage import MeetingStore
from .chunk_pipeline import ChunkedMinuteGenerator, chunk_statuses, format_offset, format_transcript
from .progress import GenerationProgressBroadcaster

logger = logging.getLogger(__name__)

GENERATING_START = 30
GENERATING_END = 85


def render_minutes(meeting: MeetingInfo, chunks: Sequence[MinuteChunk]) -> str:
    """Stitch chunk results into a markdown minutes document."""
    lines = [f"# Meeting Minutes: {meeting.title or 'N/A'}", ""]
    if meeting.agenda:
        lines += ["## Agenda", meeting.agenda, ""]

    lines += ["## Discussion", ""]
    for chunk in chunks:
        lines.append(f"### {format_offset(chunk.start_time)} - {format_offset(chunk.end_time)}")
        lines.append(chunk.summary)
        if chunk.key_points:
            lines.append("")
            lines += [f"- {point}" for point in chunk.key_points]
        lines.append("")

    decisions = [d for chunk in chunks for d in chunk.decisions]
    action_items = [a for chunk in chunks for a in chunk.action_items]
    lines += ["## Decisions", ""]
    lines += [f"- {d}" for d in decisions] or ["- None recorded"]
    lines += ["", "## Action Items", ""]
    lines += [f"- [ ] {a}" for a in action_items] or ["- None recorded"]
    return "\n".join(lines) + "\n"


class MinutesGenerator:
    """Produces the minutes document of a meeting, reporting progress as it goes."""

    def __init__(self, store: MeetingStore, pipeline: ChunkedMinuteGenerator,
                 broadcaster: GenerationProgressBroadcaster, chunk_duration_seconds: int = 300,
                 seconds_per_chunk: int = 15):
        """Initialize the generator.

        Args:
            store: Source of segments and chunks, destination of the document
            pipeline: Summarizes windows that have no chunk yet
            broadcaster: Progress writer for the runs started here
            chunk_duration_seconds: Window length used for missing chunks
            seconds_per_chunk: Estimate used for the remaining-time field
        """
        self.store = store
        self.pipeline = pipeline
        self.broadcaster = broadcaster
        self.chunk_duration_seconds = chunk_duration_seconds
        self.seconds_per_chunk = seconds_per_chunk

    async def generate(self, meeting_id: str) -> MeetingMinutes:
        """Run one generation for `meeting_id`.

        Raises:
            GenerationInProgress: Another generation for the meeting is not finished
            GenerationFailed: The run reached the failed state
        """
        try:
            progress = self.broadcaster.start(meeting_id)
            minutes = await self._run(meeting_id, progress.generation_id)
        except GenerationInProgress:
            raise
        except asyncio.CancelledError:
            self._fail(meeting_id, "Generation cancelled")
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            self._fail(meeting_id, message)
            raise GenerationFailed(meeting_id, message) from e

        self.broadcaster.complete(meeting_id)
        logger.info(f"Minutes generated for meeting {meeting_id} ({minutes.chunk_count} chunks)")
        return minutes

    def _fail(self, meeting_id: str, message: str) -> None:
        if self.broadcaster.is_running(meeting_id):
            self.broadcaster.fail(meeting_id, message)

    async def _run(self, meeting_id: str, generation_id: str) -> MeetingMinutes:
        self.broadcaster.advance(meeting_id, GenerationStatus.FETCHING_DATA, 10)
        meeting = self.store.get_meeting(meeting_id) or MeetingInfo(meeting_id=meeting_id)
        segments = self.store.list_segments(meeting_id)
        chunks = self.store.list_chunks(meeting_id)
        if not segments and not chunks:
            raise ValueError("No transcription available for this meeting")

        self.broadcaster.advance(meeting_id, GenerationStatus.ANALYZING, 25)
        recording_seconds = max(
            [segments[-1].timestamp + 1.0 if segments else 0.0] + [c.end_time for c in chunks])
        missing = [
            status for status in chunk_statuses(recording_seconds, self.chunk_duration_seconds, chunks)
            if status.status == "pending"
        ]
        windows: List[tuple] = []
        for status in missing:
            window_segments = self.store.list_segments(meeting_id, status.start_time, status.end_time)
            if window_segments:
                windows.append((status, format_transcript(window_segments)))

        total = len(windows)
        self.broadcaster.advance(
            meeting_id, GenerationStatus.GENERATING, GENERATING_START,
            estimated_seconds=total * self.seconds_per_chunk)

        for done, (status, text) in enumerate(windows, start=1):
            await self.pipeline.process_chunk(
                meeting_id, status.chunk_index, status.start_time, status.end_time, text)
            percentage = GENERATING_START + (GENERATING_END - GENERATING_START) * done // total
            self.broadcaster.advance(
                meeting_id, GenerationStatus.GENERATING, percentage,
                current_step=f"Generating minutes with AI... ({done}/{total} chunks)",
                estimated_seconds=(total - done) * self.seconds_per_chunk)

        self.broadcaster.advance(meeting_id, GenerationStatus.FINALIZING, 90, estimated_seconds=1)
        chunks = self.store.list_chunks(meeting_id)
        minutes = MeetingMinutes(
            meeting_id=meeting_id,
            content=render_minutes(meeting, chunks),
            chunk_count=len(chunks),
            generation_id=generation_id,
        )
        self.store.save_minutes(minutes)
        return minutes
