"""Generation progress state machine and the process-wide generation registry.

initializing -> fetching_data -> analyzing -> generating -> finalizing -> completed
failed is reachable from any non-terminal state.

Every transition is persisted as a new progress row; the store publishes it
to any number of subscribers. Observers never trust the notification payload:
the registry re-reads the latest record for the meeting on each notification.
"""

import logging
import threading
import uuid
from typing import Callable, Dict, List, Optional

from ..errors import GenerationInProgress, InvalidProgressTransition
from ..models import GenerationProgress, GenerationStatus, StoreChange
from ..models.progress import STATUS_MESSAGES
from ..storage import MeetingStore, Subscription
from ..storage.store import PROGRESS

logger = logging.getLogger(__name__)


class GenerationProgressBroadcaster:
    """Single writer of progress transitions for the generations it started."""

    def __init__(self, store: MeetingStore):
        self.store = store
        self.lock = threading.Lock()
        self.active: Dict[str, GenerationProgress] = {}

    def start(self, meeting_id: str, estimated_seconds: Optional[int] = None) -> GenerationProgress:
        """Create the initializing record of a new generation.

        Raises:
            GenerationInProgress: The meeting already has a non-terminal generation
        """
        with self.lock:
            latest = self.store.latest_progress(meeting_id)
            if meeting_id in self.active or (latest is not None and not latest.is_terminal):
                raise GenerationInProgress(f"A minutes generation is already running for meeting {meeting_id}")
            progress = GenerationProgress(
                meeting_id=meeting_id,
                generation_id=str(uuid.uuid4()),
                status=GenerationStatus.INITIALIZING,
                percentage=0,
                current_step=STATUS_MESSAGES[GenerationStatus.INITIALIZING],
                estimated_seconds=estimated_seconds,
            )
            self.active[meeting_id] = progress
        logger.info(f"Generation {progress.generation_id} started for meeting {meeting_id}")
        return self.store.insert_progress(progress)

    def advance(self, meeting_id: str, status: GenerationStatus, percentage: int,
                current_step: Optional[str] = None,
                estimated_seconds: Optional[int] = None) -> GenerationProgress:
        """Persist a forward transition.

        Raises:
            InvalidProgressTransition: No generation is running, the status moves
                backwards, or the percentage decreases
        """
        if status is GenerationStatus.FAILED:
            raise InvalidProgressTransition("Use fail() to record a failed generation")
        if not 0 <= percentage <= 100:
            raise InvalidProgressTransition(f"Percentage out of range: {percentage}")

        with self.lock:
            current = self._current(meeting_id)
            if status.rank < current.status.rank:
                raise InvalidProgressTransition(
                    f"Cannot move from {current.status.value} back to {status.value}")
            if percentage < current.percentage:
                raise InvalidProgressTransition(
                    f"Percentage cannot decrease ({current.percentage} -> {percentage})")
            progress = GenerationProgress(
                meeting_id=meeting_id,
                generation_id=current.generation_id,
                status=status,
                percentage=percentage,
                current_step=current_step or STATUS_MESSAGES[status],
                estimated_seconds=estimated_seconds,
            )
            self._track(progress)

        logger.debug(f"Generation {progress.generation_id}: {status.value} {percentage}%")
        return self.store.insert_progress(progress)

    def complete(self, meeting_id: str) -> GenerationProgress:
        return self.advance(meeting_id, GenerationStatus.COMPLETED, 100, estimated_seconds=0)

    def fail(self, meeting_id: str, error_message: str) -> GenerationProgress:
        """Persist the terminal failed record; the message is mandatory."""
        if not error_message:
            raise ValueError("error_message is required for a failed generation")
        with self.lock:
            current = self._current(meeting_id)
            progress = GenerationProgress(
                meeting_id=meeting_id,
                generation_id=current.generation_id,
                status=GenerationStatus.FAILED,
                percentage=current.percentage,
                current_step=STATUS_MESSAGES[GenerationStatus.FAILED],
                error_message=error_message,
            )
            self._track(progress)
        logger.error(f"Generation {progress.generation_id} failed: {error_message}")
        return self.store.insert_progress(progress)

    def latest(self, meeting_id: str) -> Optional[GenerationProgress]:
        return self.store.latest_progress(meeting_id)

    def is_running(self, meeting_id: str) -> bool:
        with self.lock:
            return meeting_id in self.active

    def _current(self, meeting_id: str) -> GenerationProgress:
        current = self.active.get(meeting_id)
        if current is None:
            raise InvalidProgressTransition(f"No generation running for meeting {meeting_id}")
        return current

    def _track(self, progress: GenerationProgress) -> None:
        if progress.is_terminal:
            self.active.pop(progress.meeting_id, None)
        else:
            self.active[progress.meeting_id] = progress


class GenerationObserver:
    """Receives generation progress from a GenerationRegistry."""

    def on_update(self, progress: GenerationProgress) -> None:
        pass

    def on_completed(self, progress: GenerationProgress) -> None:
        pass

    def on_failed(self, progress: GenerationProgress) -> None:
        pass

    def on_removed(self, meeting_id: str) -> None:
        pass


def _timer_schedule(delay: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class GenerationRegistry:
    """Process-wide view of active generations, shared with observers by injection.

    A generation appears with its first progress record and is removed a fixed
    display delay after reaching a terminal state.
    """

    def __init__(
        self,
        store: MeetingStore,
        completion_delay: float = 3.0,
        failure_delay: float = 5.0,
        schedule: Callable[[float, Callable[[], None]], object] = _timer_schedule,
    ):
        """Initialize the registry.

        Args:
            store: Store whose progress table is observed
            completion_delay: Seconds a completed generation stays listed
            failure_delay: Seconds a failed generation stays listed
            schedule: Runs a callback after a delay; returns a handle with cancel()
        """
        self.store = store
        self.completion_delay = completion_delay
        self.failure_delay = failure_delay
        self.schedule = schedule

        self.lock = threading.RLock()
        self.active: Dict[str, GenerationProgress] = {}
        self.observers: List[GenerationObserver] = []
        # Last terminal generation id per meeting
        self.finished: Dict[str, str] = {}
        self.timers: Dict[str, object] = {}

        self.subscription: Optional[Subscription] = store.subscribe(PROGRESS, None, self._on_change)
        logger.info("GenerationRegistry initialized")

    def add_observer(self, observer: GenerationObserver) -> None:
        with self.lock:
            self.observers.append(observer)

    def remove_observer(self, observer: GenerationObserver) -> None:
        with self.lock:
            if observer in self.observers:
                self.observers.remove(observer)

    def _on_change(self, change: StoreChange) -> None:
        self.refresh(change.meeting_id)

    def refresh(self, meeting_id: str) -> Optional[GenerationProgress]:
        """Re-read the authoritative latest record and notify observers of it."""
        progress = self.store.latest_progress(meeting_id)
        if progress is None:
            return None

        with self.lock:
            if self.finished.get(meeting_id) == progress.generation_id:
                return progress
            self.active[meeting_id] = progress
            if progress.is_terminal:
                self.finished[meeting_id] = progress.generation_id
            observers = list(self.observers)

        if progress.status is GenerationStatus.COMPLETED:
            hook = "on_completed"
        elif progress.status is GenerationStatus.FAILED:
            hook = "on_failed"
        else:
            hook = "on_update"
        for observer in observers:
            self._notify(observer, hook, progress)

        if progress.is_terminal:
            delay = self.completion_delay if progress.status is GenerationStatus.COMPLETED else self.failure_delay
            handle = self.schedule(delay, lambda: self._remove(meeting_id, progress.generation_id))
            with self.lock:
                listed = self.active.get(meeting_id)
                if listed is not None and listed.generation_id == progress.generation_id:
                    self.timers[progress.generation_id] = handle
        return progress

    def _remove(self, meeting_id: str, generation_id: str) -> None:
        with self.lock:
            self.timers.pop(generation_id, None)
            current = self.active.get(meeting_id)
            if current is None or current.generation_id != generation_id:
                return
            del self.active[meeting_id]
            observers = list(self.observers)
        logger.debug(f"Generation {generation_id} removed from active set")
        for observer in observers:
            self._notify(observer, "on_removed", meeting_id)

    def _notify(self, observer: GenerationObserver, hook: str, argument: object) -> None:
        try:
            getattr(observer, hook)(argument)
        except Exception as e:
            logger.error(f"Generation observer {observer.__class__.__name__}.{hook} failed: {e}", exc_info=True)

    def is_generating(self, meeting_id: str) -> bool:
        with self.lock:
            progress = self.active.get(meeting_id)
            return progress is not None and not progress.is_terminal

    def get(self, meeting_id: str) -> Optional[GenerationProgress]:
        with self.lock:
            return self.active.get(meeting_id)

    def active_generations(self) -> List[GenerationProgress]:
        with self.lock:
            return list(self.active.values())

    def close(self) -> None:
        with self.lock:
            timers, self.timers = self.timers, {}
        for handle in timers.values():
            cancel = getattr(handle, "cancel", None)
            if cancel:
                cancel()
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None
