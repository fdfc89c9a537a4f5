"""Single-flight queue that serialises analysis requests to the model backend."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable
from uuid import uuid4

from .errors import ServiceError, TransportError
from .models import AnalysisRequest, InsightResult
from .validation import ValidationOptions, validate_request

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

InsightExecutor = Callable[[AnalysisRequest], Awaitable[InsightResult]]
CompleteCallback = Callable[[InsightResult], Any]
ErrorCallback = Callable[[ServiceError], Any]
ProgressCallback = Callable[[int], Any]

PENDING = "pending"
IN_FLIGHT = "in_flight"
COMPLETED = "completed"
FAILED = "failed"
CANCELED = "canceled"
_TERMINAL = frozenset({COMPLETED, FAILED, CANCELED})

_DEFAULT_MAX_HISTORY = 64
_PROGRESS_MIN_STEP = 5
_PROGRESS_MAX_STEP = 25
_SHUTDOWN_MESSAGE = "Insight request queue is shutting down"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class QueueEntry:
    """Track one analysis request from enqueue to its terminal callback."""

    id: str
    request: AnalysisRequest
    on_complete: CompleteCallback = field(repr=False)
    on_error: ErrorCallback = field(repr=False)
    on_progress: ProgressCallback | None = field(default=None, repr=False)
    status: str = PENDING
    progress: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: InsightResult | None = None
    error: ServiceError | None = None
    _event: asyncio.Event = field(default_factory=asyncio.Event, init=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in _TERMINAL

    async def wait(self, timeout: float | None = None) -> bool:
        """Wait for the entry to finish.

        Returns ``True`` if it reached a terminal state within the timeout.
        """

        if self.is_terminal:
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def mark_in_flight(self) -> None:
        self.status = IN_FLIGHT
        self.started_at = _utcnow()

    def mark_completed(self, result: InsightResult) -> bool:
        if self.is_terminal:
            return False
        self.status = COMPLETED
        self.result = result
        self.progress = 100
        self._finish()
        return True

    def mark_failed(self, error: ServiceError) -> bool:
        if self.is_terminal:
            return False
        self.status = FAILED
        self.error = error
        self._finish()
        return True

    def mark_canceled(self) -> bool:
        if self.status != PENDING:
            return False
        self.status = CANCELED
        self._finish()
        return True

    def _finish(self) -> None:
        self.completed_at = _utcnow()
        self._event.set()

    def to_payload(self, *, include_result: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "progress": self.progress,
            "createdAt": self.created_at.isoformat(),
        }
        if self.started_at:
            payload["startedAt"] = self.started_at.isoformat()
        if self.completed_at:
            payload["completedAt"] = self.completed_at.isoformat()
        if self.error is not None:
            payload["error"] = self.error.to_payload()
        if include_result and self.result is not None:
            payload["result"] = self.result.to_payload()
        return payload


class InsightRequestQueue:
    """FIFO queue that runs at most ``max_concurrent`` analyses at a time.

    All bookkeeping happens synchronously on the owning event loop, so the
    pending list and active counter need no lock. Every enqueued entry gets
    exactly one of ``on_complete``/``on_error`` unless it is canceled while
    still pending, in which case it gets neither.
    """

    def __init__(
        self,
        executor: InsightExecutor,
        *,
        max_concurrent: int = 1,
        validation: ValidationOptions | None = None,
        progress_interval: float = 1.0,
        progress_cap: int = 95,
        max_history: int = _DEFAULT_MAX_HISTORY,
        metrics: "MetricsRecorder" | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._executor = executor
        self._max_concurrent = max(1, max_concurrent)
        self._validation = validation
        self._progress_interval = max(progress_interval, 0.001)
        self._progress_cap = min(max(progress_cap, 0), 99)
        self._max_history = max(1, max_history)
        self._metrics = metrics
        self._rng = rng or random.Random()
        self._pending: deque[QueueEntry] = deque()
        self._entries: dict[str, QueueEntry] = {}
        self._history: deque[str] = deque()
        self._running: dict[str, tuple[asyncio.Task, QueueEntry]] = {}
        self._active = 0
        self._shutdown = False

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def active_count(self) -> int:
        return self._active

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def get(self, entry_id: str) -> QueueEntry | None:
        return self._entries.get(entry_id)

    def enqueue(
        self,
        request: AnalysisRequest,
        on_complete: CompleteCallback,
        on_error: ErrorCallback,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Append a request and return its id without waiting for execution.

        Must be called from a running event loop. Validation happens when the
        entry starts executing, so invalid requests surface via ``on_error``.
        """

        if self._shutdown:
            raise RuntimeError("Insight request queue is shut down")

        entry = QueueEntry(
            id=uuid4().hex,
            request=request,
            on_complete=on_complete,
            on_error=on_error,
            on_progress=on_progress,
        )
        self._entries[entry.id] = entry
        self._pending.append(entry)
        logger.info("insight.queue.enqueued id=%s pending=%s", entry.id, len(self._pending))
        if self._metrics:
            self._metrics.increment("insight.queue.enqueued")
        self._drain()
        return entry.id

    def cancel(self, entry_id: str) -> bool:
        """Drop a still-pending entry. In-flight entries are left to their deadline."""

        for entry in self._pending:
            if entry.id == entry_id:
                break
        else:
            return False
        self._pending.remove(entry)
        entry.mark_canceled()
        self._retire(entry)
        logger.info("insight.queue.canceled id=%s", entry_id)
        if self._metrics:
            self._metrics.increment("insight.queue.canceled")
        return True

    async def shutdown(self) -> None:
        """Resolve every outstanding entry with a :class:`TransportError`."""

        self._shutdown = True
        while self._pending:
            entry = self._pending.popleft()
            await self._fail(entry, TransportError(_SHUTDOWN_MESSAGE))
            self._retire(entry)

        tasks = list(self._running.values())
        for task, _ in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*(task for task, _ in tasks), return_exceptions=True)

        # A task cancelled before its first step never reaches _run's cleanup.
        for _, entry in list(self._running.values()):
            await self._fail(entry, TransportError(_SHUTDOWN_MESSAGE))
            self._release(entry)
        logger.info("insight.queue.shutdown in_flight=%s", len(tasks))

    def _drain(self) -> None:
        if self._shutdown:
            return
        loop = asyncio.get_running_loop()
        while self._pending and self._active < self._max_concurrent:
            entry = self._pending.popleft()
            entry.mark_in_flight()
            self._active += 1
            self._running[entry.id] = (loop.create_task(self._run(entry)), entry)
            if self._metrics:
                self._metrics.record_timing(
                    "insight.queue.wait_time",
                    (entry.started_at - entry.created_at).total_seconds(),
                )
                self._metrics.set_gauge("insight.queue.active", float(self._active))

    async def _run(self, entry: QueueEntry) -> None:
        started = time.perf_counter()
        ticker = asyncio.create_task(self._tick_progress(entry))
        result: InsightResult | None = None
        error: ServiceError | None = None
        try:
            validate_request(entry.request, self._validation)
            result = await self._executor(entry.request)
        except asyncio.CancelledError:
            error = TransportError(_SHUTDOWN_MESSAGE)
        except ServiceError as exc:
            error = exc
        except Exception as exc:
            logger.exception("insight.queue.unexpected_error id=%s", entry.id)
            error = TransportError(f"Insight generation failed: {exc}")
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)

        try:
            if error is None and result is not None:
                if entry.mark_completed(result):
                    logger.info(
                        "insight.queue.completed id=%s duration_ms=%s",
                        entry.id,
                        round((time.perf_counter() - started) * 1000),
                    )
                    if self._metrics:
                        self._metrics.increment("insight.queue.completed")
                    await self._invoke(entry.on_complete, result, entry)
            else:
                await self._fail(entry, error or TransportError("Insight generation produced no result"))
        finally:
            self._release(entry)
            self._drain()

    def _release(self, entry: QueueEntry) -> None:
        if self._running.pop(entry.id, None) is None:
            return
        self._active = max(self._active - 1, 0)
        self._retire(entry)
        if self._metrics:
            self._metrics.set_gauge("insight.queue.active", float(self._active))

    async def _fail(self, entry: QueueEntry, error: ServiceError) -> None:
        if not entry.mark_failed(error):
            return
        logger.warning("insight.queue.failed id=%s kind=%s error=%s", entry.id, error.kind, error.message)
        if self._metrics:
            self._metrics.increment("insight.queue.failed", kind=error.kind)
        await self._invoke(entry.on_error, error, entry)

    async def _tick_progress(self, entry: QueueEntry) -> None:
        while entry.status == IN_FLIGHT and entry.progress < self._progress_cap:
            await asyncio.sleep(self._progress_interval)
            if entry.status != IN_FLIGHT:
                return
            step = self._rng.randrange(_PROGRESS_MIN_STEP, _PROGRESS_MAX_STEP)
            entry.progress = min(entry.progress + step, self._progress_cap)
            if entry.on_progress is not None:
                await self._invoke(entry.on_progress, entry.progress, entry)

    async def _invoke(self, callback: Callable[[Any], Any], value: Any, entry: QueueEntry) -> None:
        try:
            outcome = callback(value)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("insight.queue.callback_error id=%s status=%s", entry.id, entry.status)

    def _retire(self, entry: QueueEntry) -> None:
        self._history.append(entry.id)
        while len(self._history) > self._max_history:
            stale_id = self._history.popleft()
            self._entries.pop(stale_id, None)


__all__ = [
    "CANCELED",
    "COMPLETED",
    "FAILED",
    "IN_FLIGHT",
    "InsightExecutor",
    "InsightRequestQueue",
    "PENDING",
    "QueueEntry",
]
