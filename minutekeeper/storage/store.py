"""Meeting row store with publish/subscribe change notifications.

This is the in-process stand-in for the hosted data/event service: rows are
kept per table and per meeting, and every write is announced on the pypubsub
topic ``store.<table>`` as a :class:`StoreChange`. Subscribers must treat the
notification as a hint and re-read authoritative state from the store.
"""

import json
import logging
import threading
import uuid
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from pubsub import pub

from ..models import (
    Chapter,
    ChapterType,
    GenerationProgress,
    GenerationStatus,
    MeetingInfo,
    MeetingMinutes,
    MinuteChunk,
    StoreChange,
    TranscriptSegment,
)
from ..models.progress import STATUS_MESSAGES

logger = logging.getLogger(__name__)

SEGMENTS = "transcriptions"
CHUNKS = "minute_chunks"
PROGRESS = "minute_generation_progress"
CHAPTERS = "meeting_chapters"
MEETINGS = "meetings"
MINUTES = "minutes"

TABLES = (MEETINGS, SEGMENTS, CHUNKS, PROGRESS, CHAPTERS, MINUTES)

INTERRUPTED_MESSAGE = "Generation interrupted"


def topic_for(table: str) -> str:
    return f"store.{table}"


class Subscription:
    """Handle for a meeting-scoped store subscription."""

    def __init__(self, store: "MeetingStore", table: str, listener: Callable[[StoreChange], None]):
        self.store = store
        self.table = table
        # pypubsub only keeps weak references, so the subscription owns the listener
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        if pub.isSubscribed(self.listener, topic_for(self.table)):
            pub.unsubscribe(self.listener, topic_for(self.table))
        self.store._forget(self)


class MeetingStore:
    """Thread-safe row store keyed by meeting id."""

    def __init__(self):
        self.lock = threading.RLock()
        self.meetings: Dict[str, MeetingInfo] = {}
        self.segments: Dict[str, List[TranscriptSegment]] = {}
        self.chunks: Dict[Tuple[str, int], MinuteChunk] = {}
        self.progress: Dict[str, List[GenerationProgress]] = {}
        self.chapters: Dict[str, List[Chapter]] = {}
        self.minutes: Dict[str, MeetingMinutes] = {}
        self._subscriptions: List[Subscription] = []

    # -- notifications -------------------------------------------------

    def subscribe(self, table: str, meeting_id: Optional[str],
                  callback: Callable[[StoreChange], None]) -> Subscription:
        """Subscribe to inserts/updates of `table`, optionally scoped to one meeting."""
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")

        def _listener(change: StoreChange) -> None:
            if meeting_id is not None and change.meeting_id != meeting_id:
                return
            # A failing subscriber must not fail the write that announced the change
            try:
                callback(change)
            except Exception as e:
                logger.error(f"Subscriber of {table} failed on {change.event} "
                             f"for meeting {change.meeting_id}: {e}", exc_info=True)

        subscription = Subscription(self, table, _listener)
        with self.lock:
            self._subscriptions.append(subscription)
        pub.subscribe(_listener, topic_for(table))
        logger.debug(f"Subscribed to {table} (meeting={meeting_id})")
        return subscription

    def _forget(self, subscription: Subscription) -> None:
        with self.lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _publish(self, event: str, table: str, meeting_id: str, record: Any) -> None:
        self._on_write(table, meeting_id)
        # Outside the lock so listeners may read the store
        pub.sendMessage(topic_for(table), change=StoreChange(
            event=event, table=table, meeting_id=meeting_id, record=record))

    def _on_write(self, table: str, meeting_id: str) -> None:
        """Hook for persistent subclasses."""

    # -- meetings --------------------------------------------------------

    def put_meeting(self, meeting: MeetingInfo) -> MeetingInfo:
        with self.lock:
            event = "update" if meeting.meeting_id in self.meetings else "insert"
            self.meetings[meeting.meeting_id] = meeting
        self._publish(event, MEETINGS, meeting.meeting_id, meeting)
        return meeting

    def get_meeting(self, meeting_id: str) -> Optional[MeetingInfo]:
        with self.lock:
            return self.meetings.get(meeting_id)

    # -- transcript segments (append only) -------------------------------

    def append_segment(self, segment: TranscriptSegment) -> TranscriptSegment:
        with self.lock:
            existing = self.segments.setdefault(segment.meeting_id, [])
            if existing and segment.timestamp < existing[-1].timestamp:
                raise ValueError(
                    f"Segment timestamp {segment.timestamp} precedes last stored "
                    f"{existing[-1].timestamp} for meeting {segment.meeting_id}")
            existing.append(segment)
        self._publish("insert", SEGMENTS, segment.meeting_id, segment)
        return segment

    def list_segments(self, meeting_id: str, start_time: Optional[float] = None,
                      end_time: Optional[float] = None) -> List[TranscriptSegment]:
        """Segments of a meeting in order, optionally limited to [start_time, end_time)."""
        with self.lock:
            segments = list(self.segments.get(meeting_id, []))
        if start_time is not None:
            segments = [s for s in segments if s.timestamp >= start_time]
        if end_time is not None:
            segments = [s for s in segments if s.timestamp < end_time]
        return segments

    # -- minute chunks (upsert) -------------------------------------------

    def upsert_chunk(self, chunk: MinuteChunk) -> MinuteChunk:
        key = (chunk.meeting_id, chunk.chunk_index)
        with self.lock:
            event = "update" if key in self.chunks else "insert"
            self.chunks[key] = chunk
        self._publish(event, CHUNKS, chunk.meeting_id, chunk)
        return chunk

    def get_chunk(self, meeting_id: str, chunk_index: int) -> Optional[MinuteChunk]:
        with self.lock:
            return self.chunks.get((meeting_id, chunk_index))

    def list_chunks(self, meeting_id: str) -> List[MinuteChunk]:
        with self.lock:
            chunks = [c for (m, _), c in self.chunks.items() if m == meeting_id]
        return sorted(chunks, key=lambda c: c.chunk_index)

    # -- generation progress (append only, latest wins) -------------------

    def insert_progress(self, progress: GenerationProgress) -> GenerationProgress:
        with self.lock:
            self.progress.setdefault(progress.meeting_id, []).append(progress)
        self._publish("insert", PROGRESS, progress.meeting_id, progress)
        return progress

    def latest_progress(self, meeting_id: str) -> Optional[GenerationProgress]:
        with self.lock:
            records = self.progress.get(meeting_id)
            return records[-1] if records else None

    def list_progress(self, meeting_id: str, generation_id: Optional[str] = None) -> List[GenerationProgress]:
        with self.lock:
            records = list(self.progress.get(meeting_id, []))
        if generation_id is not None:
            records = [r for r in records if r.generation_id == generation_id]
        return records

    # -- chapters (append only) -------------------------------------------

    def insert_chapter(self, chapter: Chapter) -> Chapter:
        if chapter.chapter_id is None:
            chapter.chapter_id = str(uuid.uuid4())
        with self.lock:
            self.chapters.setdefault(chapter.meeting_id, []).append(chapter)
        self._publish("insert", CHAPTERS, chapter.meeting_id, chapter)
        return chapter

    def recent_chapters(self, meeting_id: str, limit: int = 5) -> List[Chapter]:
        """Most recent chapters first."""
        with self.lock:
            chapters = list(self.chapters.get(meeting_id, []))
        return list(reversed(chapters))[:limit]

    # -- minutes document -------------------------------------------------

    def save_minutes(self, minutes: MeetingMinutes) -> MeetingMinutes:
        with self.lock:
            event = "update" if minutes.meeting_id in self.minutes else "insert"
            self.minutes[minutes.meeting_id] = minutes
        self._publish(event, MINUTES, minutes.meeting_id, minutes)
        return minutes

    def get_minutes(self, meeting_id: str) -> Optional[MeetingMinutes]:
        with self.lock:
            return self.minutes.get(meeting_id)

    def close(self) -> None:
        """Drop all subscriptions made through this store."""
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def _decode(table: str, data: Dict[str, Any]) -> Any:
    for key in ("created_at", "generated_at"):
        if data.get(key):
            data[key] = datetime.fromisoformat(data[key])
    if table == MEETINGS:
        return MeetingInfo(**data)
    if table == SEGMENTS:
        return TranscriptSegment(**data)
    if table == CHUNKS:
        return MinuteChunk(**data)
    if table == PROGRESS:
        data["status"] = GenerationStatus(data["status"])
        return GenerationProgress(**data)
    if table == CHAPTERS:
        data["type"] = ChapterType(data["type"])
        return Chapter(**data)
    if table == MINUTES:
        return MeetingMinutes(**data)
    raise ValueError(f"Unknown table: {table}")


class JsonMeetingStore(MeetingStore):
    """MeetingStore that snapshots each meeting's tables to JSON files."""

    def __init__(self, meetings_dir: str):
        super().__init__()
        self.meetings_dir = Path(meetings_dir)
        self.meetings_dir.mkdir(parents=True, exist_ok=True)
        self._load()
        self._close_interrupted_generations()
        logger.info(f"JsonMeetingStore initialized at {self.meetings_dir}")

    def _close_interrupted_generations(self) -> None:
        """Fail generations whose process died before a terminal record was written."""
        for meeting_id, records in list(self.progress.items()):
            if not records or records[-1].is_terminal:
                continue
            latest = records[-1]
            records.append(GenerationProgress(
                meeting_id=meeting_id,
                generation_id=latest.generation_id,
                status=GenerationStatus.FAILED,
                percentage=latest.percentage,
                current_step=STATUS_MESSAGES[GenerationStatus.FAILED],
                error_message=INTERRUPTED_MESSAGE,
            ))
            self._on_write(PROGRESS, meeting_id)
            logger.warning(f"Generation {latest.generation_id} for meeting {meeting_id} "
                           f"was left {latest.status.value}; marked failed")

    def _rows(self, table: str, meeting_id: str) -> List[Any]:
        if table == MEETINGS:
            meeting = self.meetings.get(meeting_id)
            return [meeting] if meeting else []
        if table == SEGMENTS:
            return self.segments.get(meeting_id, [])
        if table == CHUNKS:
            return self.list_chunks(meeting_id)
        if table == PROGRESS:
            return self.progress.get(meeting_id, [])
        if table == CHAPTERS:
            return self.chapters.get(meeting_id, [])
        minutes = self.minutes.get(meeting_id)
        return [minutes] if minutes else []

    def _on_write(self, table: str, meeting_id: str) -> None:
        meeting_dir = self.meetings_dir / meeting_id
        meeting_dir.mkdir(parents=True, exist_ok=True)
        with self.lock:
            rows = [_encode(asdict(row)) for row in self._rows(table, meeting_id)]
        path = meeting_dir / f"{table}.json"
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(rows, f, indent=2, ensure_ascii=False)
        tmp_path.replace(path)
        logger.debug(f"Snapshot written: {path} ({len(rows)} rows)")

    def _load(self) -> None:
        for meeting_dir in sorted(self.meetings_dir.iterdir()):
            if not meeting_dir.is_dir():
                continue
            for table in TABLES:
                path = meeting_dir / f"{table}.json"
                if not path.exists():
                    continue
                with open(path, 'r', encoding='utf-8') as f:
                    rows = [_decode(table, row) for row in json.load(f)]
                self._restore(table, meeting_dir.name, rows)

    def _restore(self, table: str, meeting_id: str, rows: List[Any]) -> None:
        if table == MEETINGS:
            for row in rows:
                self.meetings[meeting_id] = row
        elif table == SEGMENTS:
            self.segments[meeting_id] = rows
        elif table == CHUNKS:
            for row in rows:
                self.chunks[(meeting_id, row.chunk_index)] = row
        elif table == PROGRESS:
            self.progress[meeting_id] = rows
        elif table == CHAPTERS:
            self.chapters[meeting_id] = rows
        else:
            for row in rows:
                self.minutes[meeting_id] = row
