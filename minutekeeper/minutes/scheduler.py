"""Chunk scheduling: decides when transcript windows go to the pipeline.

Windows are triggered by covered transcript time (segment timestamps), not
wall clock:
 - window k = [k * duration, (k + 1) * duration)
 - window k is submitted once a segment at or past its end arrives
 - flush() submits the trailing partial window when capture stops
"""

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional, Set

from ..models import StoreChange, TranscriptSegment
from ..storage import MeetingStore, Subscription
from ..storage.store import SEGMENTS
from .chunk_pipeline import ChunkedMinuteGenerator, format_transcript

logger = logging.getLogger(__name__)


class ChunkScheduler:
    """Submits completed transcript windows of one meeting to the pipeline."""

    def __init__(
        self,
        store: MeetingStore,
        pipeline: ChunkedMinuteGenerator,
        meeting_id: str,
        chunk_duration_seconds: int,
        on_error: Optional[Callable[[int, Exception], None]] = None,
    ) -> None:
        if chunk_duration_seconds <= 0:
            raise ValueError("chunk_duration_seconds must be positive")
        self.store = store
        self.pipeline = pipeline
        self.meeting_id = meeting_id
        self.chunk_duration_seconds = chunk_duration_seconds
        self.on_error = on_error

        self.lock = threading.Lock()
        self.submitted: Set[int] = set()
        self.pending: List[Future] = []
        self.next_index = 0
        self.latest_timestamp: Optional[float] = None

        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.subscription: Optional[Subscription] = None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Begin watching appended segments; submissions run on `loop`."""
        self.loop = loop or asyncio.get_running_loop()
        self.subscription = self.store.subscribe(SEGMENTS, self.meeting_id, self._on_change)
        logger.info(f"ChunkScheduler started for meeting {self.meeting_id}; "
                    f"window={self.chunk_duration_seconds}s")

    def _on_change(self, change: StoreChange) -> None:
        segment: TranscriptSegment = change.record
        with self.lock:
            if self.latest_timestamp is None or segment.timestamp > self.latest_timestamp:
                self.latest_timestamp = segment.timestamp
            while segment.timestamp >= (self.next_index + 1) * self.chunk_duration_seconds:
                index = self.next_index
                self.next_index += 1
                start = index * self.chunk_duration_seconds
                self._submit_locked(index, start, start + self.chunk_duration_seconds)

    def _submit_locked(self, index: int, start: float, end: float) -> None:
        segments = self.store.list_segments(self.meeting_id, start, end)
        if not segments:
            logger.debug(f"Window {index} has no transcript; skipped")
            return
        if index in self.submitted:
            logger.debug(f"Window {index} resubmitted")
        self.submitted.add(index)
        logger.info(f"ChunkScheduler: submitting window {index} ({start:.0f}s - {end:.0f}s, "
                    f"{len(segments)} segments)")
        future = asyncio.run_coroutine_threadsafe(
            self.pipeline.process_chunk(self.meeting_id, index, start, end, format_transcript(segments)),
            self.loop,
        )
        future.add_done_callback(lambda f, i=index: self._on_done(i, f))
        self.pending.append(future)

    def _on_done(self, index: int, future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"ChunkScheduler: window {index} failed: {error}")
            if self.on_error:
                self.on_error(index, error)

    async def flush(self, recording_seconds: Optional[float] = None) -> None:
        """Submit the trailing partial window and wait for all submissions."""
        with self.lock:
            if self.latest_timestamp is not None:
                start = self.next_index * self.chunk_duration_seconds
                end = max(recording_seconds or 0.0, self.latest_timestamp + 1.0)
                end = min(end, start + self.chunk_duration_seconds)
                if self.latest_timestamp >= start:
                    self._submit_locked(self.next_index, start, end)
            pending = list(self.pending)
            self.pending.clear()

        if pending:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in pending), return_exceptions=True)
        logger.info(f"ChunkScheduler flushed; windows submitted: {sorted(self.submitted)}")

    def shutdown(self) -> None:
        logger.info("ChunkScheduler: shutdown")
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None
