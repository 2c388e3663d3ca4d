"""Transcript assembly: drains recognition events into an ordered transcript.

The realtime session writes `RecognitionEvent`s to a bounded asyncio.Queue;
a single assembler task drains it, so ordering is decided in one place.
Consecutive events from the speaker of the most recent entry are merged into
that entry; every final event is also persisted as an immutable
`TranscriptSegment`.
"""

import asyncio
import logging
import re
import uuid
from typing import Callable, List, Optional, Set

from ..models import RecognitionEvent, TranscriptEntry, TranscriptSegment
from ..storage import MeetingStore

logger = logging.getLogger(__name__)

_NON_SPEECH = re.compile(
    r"\[(?:music|noise|sound|applause|laughter)\]"
    r"|\((?:breathing heavily|breathing|coughing|sighs|clears throat)\)",
    re.IGNORECASE,
)


def strip_non_speech(text: str) -> str:
    """Remove bracketed non-speech tags, keeping the surrounding whitespace."""
    return _NON_SPEECH.sub("", text or "")


def clean_transcript(text: str) -> str:
    """Strip non-speech tags, capitalize and close the sentence."""
    if not text:
        return ""
    cleaned = strip_non_speech(text).strip()
    if not cleaned:
        return ""
    cleaned = cleaned[0].upper() + cleaned[1:]
    if len(cleaned) > 3 and cleaned[-1] not in ".!?":
        cleaned += "."
    return cleaned


class TranscriptAssembler:
    """Single consumer of the recognition channel for one meeting."""

    def __init__(
        self,
        store: MeetingStore,
        meeting_id: str,
        channel: "asyncio.Queue[Optional[RecognitionEvent]]",
        merge_gap_seconds: Optional[float] = None,
        on_entry: Optional[Callable[[TranscriptEntry], None]] = None,
    ):
        """Initialize the assembler.

        Args:
            store: Store receiving the persisted segments
            meeting_id: Meeting the transcript belongs to
            channel: Bounded queue fed by the realtime session; None ends draining
            merge_gap_seconds: Max gap for merging same-speaker events, None for unbounded
            on_entry: Called with the created or extended entry after each event
        """
        self.store = store
        self.meeting_id = meeting_id
        self.channel = channel
        self.merge_gap_seconds = merge_gap_seconds
        self.on_entry = on_entry

        self.entries: List[TranscriptEntry] = []
        self.seen_item_ids: Set[str] = set()

        existing = store.list_segments(meeting_id)
        self.sequence = len(existing)
        self.last_timestamp = existing[-1].timestamp if existing else 0.0
        # A resumed meeting continues after its stored transcript; the new session clock restarts at 0
        self.time_offset = self.last_timestamp
        self.task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        if self.task is None or self.task.done():
            self.task = asyncio.create_task(self.run())
        return self.task

    async def run(self) -> None:
        """Drain the channel until the None sentinel arrives."""
        logger.info(f"TranscriptAssembler draining channel for meeting {self.meeting_id}")
        while True:
            event = await self.channel.get()
            try:
                if event is None:
                    break
                self.accept(event)
            except Exception as e:
                logger.error(f"Transcript event dropped for meeting {self.meeting_id}: {e}", exc_info=True)
            finally:
                self.channel.task_done()
        logger.info(f"TranscriptAssembler stopped: {len(self.entries)} entries, "
                    f"{self.sequence} segments")

    async def stop(self) -> None:
        """Drain what is queued, then end the assembler task."""
        if self.task is None or self.task.done():
            return
        await self.channel.put(None)
        await self.task

    def accept(self, event: RecognitionEvent) -> Optional[TranscriptEntry]:
        """Merge one event into the transcript; returns the affected entry."""
        if not event.text:
            return None
        if event.is_final and event.item_id:
            if event.item_id in self.seen_item_ids:
                logger.debug(f"Duplicate final event for item {event.item_id} ignored")
                return None
            self.seen_item_ids.add(event.item_id)

        # Segments never go backwards in time
        timestamp = max(event.timestamp + self.time_offset, self.last_timestamp)
        self.last_timestamp = timestamp

        entry = self._merge(event, timestamp)
        if event.is_final:
            self._persist(event, timestamp)
        if self.on_entry:
            self.on_entry(entry)
        return entry

    def _merge(self, event: RecognitionEvent, timestamp: float) -> TranscriptEntry:
        last = self.entries[-1] if self.entries else None
        if last is not None and last.speaker == event.speaker and self._within_gap(last, timestamp):
            if event.is_final:
                last.text = f"{last.text} {event.text}".strip()
            else:
                last.text = last.text + event.text
            last.updated_at = timestamp
            return last

        entry = TranscriptEntry(
            entry_id=str(uuid.uuid4()),
            speaker=event.speaker,
            text=event.text,
            started_at=timestamp,
            updated_at=timestamp,
            language=event.language,
        )
        self.entries.append(entry)
        return entry

    def _within_gap(self, entry: TranscriptEntry, timestamp: float) -> bool:
        if self.merge_gap_seconds is None:
            return True
        return timestamp - entry.updated_at <= self.merge_gap_seconds

    def _persist(self, event: RecognitionEvent, timestamp: float) -> None:
        segment = TranscriptSegment(
            meeting_id=self.meeting_id,
            sequence=self.sequence,
            timestamp=timestamp,
            speaker=event.speaker,
            text=event.text,
            confidence=event.confidence,
            language=event.language,
            segment_id=event.item_id or str(uuid.uuid4()),
        )
        self.store.append_segment(segment)
        self.sequence += 1
        logger.debug(f"Segment {segment.sequence} persisted ({segment.speaker}): {segment.text[:80]}")

    def transcript_text(self) -> str:
        """The assembled transcript as `speaker: text` lines."""
        return "\n".join(f"{e.speaker}: {e.text}" for e in self.entries)
