from __future__ import annotations

import asyncio
import random

import pytest

from insightboard.errors import ServiceError, TransportError, UpstreamHttpError, ValidationError
from insightboard.gateway import AIGateway, GatewayConfig
from insightboard.models import AnalysisRequest, InsightResult
from insightboard.request_queue import CANCELED, COMPLETED, FAILED, InsightRequestQueue


class CallbackLog:
    """Collect terminal and progress callbacks per entry."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []
        self.results: dict[str, InsightResult] = {}
        self.errors: dict[str, ServiceError] = {}
        self.progress: dict[str, list[int]] = {}

    def callbacks(self, label: str):
        def on_complete(result: InsightResult) -> None:
            self.events.append(("complete", label))
            self.results[label] = result

        def on_error(error: ServiceError) -> None:
            self.events.append(("error", label))
            self.errors[label] = error

        def on_progress(value: int) -> None:
            self.progress.setdefault(label, []).append(value)

        return on_complete, on_error, on_progress

    def terminal_count(self, label: str) -> int:
        return sum(1 for _, item in self.events if item == label)


def _request(topic: str) -> AnalysisRequest:
    return AnalysisRequest(topic=topic)


def _result(topic: str) -> InsightResult:
    return InsightResult(summary=f"Summary of {topic}")


@pytest.mark.asyncio
async def test_queue_executes_entry_and_completes_once() -> None:
    log = CallbackLog()

    async def executor(request: AnalysisRequest) -> InsightResult:
        await asyncio.sleep(0.01)
        return _result(request.topic)

    queue = InsightRequestQueue(executor)
    entry_id = queue.enqueue(_request("Quantum computing"), *log.callbacks("first"))
    entry = queue.get(entry_id)
    assert entry is not None

    assert await entry.wait(timeout=1.0)
    assert entry.status == COMPLETED
    assert entry.progress == 100
    assert log.results["first"].summary == "Summary of Quantum computing"
    assert log.terminal_count("first") == 1
    assert queue.active_count == 0

    await queue.shutdown()


@pytest.mark.asyncio
async def test_queue_runs_entries_one_at_a_time_in_fifo_order() -> None:
    log = CallbackLog()
    running = 0
    peak = 0
    started: list[str] = []

    async def executor(request: AnalysisRequest) -> InsightResult:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        started.append(request.topic)
        await asyncio.sleep(0.01)
        running -= 1
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_concurrent=1)
    ids = [queue.enqueue(_request(f"Topic {index}"), *log.callbacks(str(index))) for index in range(5)]

    assert queue.active_count == 1
    assert queue.pending_count == 4

    for entry_id in ids:
        assert await queue.get(entry_id).wait(timeout=2.0)

    assert peak == 1
    assert started == [f"Topic {index}" for index in range(5)]
    assert len(log.events) == 5
    assert [label for _, label in log.events] == ["0", "1", "2", "3", "4"]

    await queue.shutdown()


@pytest.mark.asyncio
async def test_next_entry_starts_only_after_terminal_callback() -> None:
    timeline: list[str] = []

    async def executor(request: AnalysisRequest) -> InsightResult:
        timeline.append(f"start:{request.topic}")
        await asyncio.sleep(0.01)
        return _result(request.topic)

    def on_complete_for(label: str):
        def on_complete(result: InsightResult) -> None:
            timeline.append(f"complete:{label}")

        return on_complete

    queue = InsightRequestQueue(executor, max_concurrent=1)
    first = queue.enqueue(_request("first"), on_complete_for("first"), lambda error: None)
    second = queue.enqueue(_request("second"), on_complete_for("second"), lambda error: None)

    assert await queue.get(first).wait(timeout=1.0)
    assert await queue.get(second).wait(timeout=1.0)
    assert timeline == ["start:first", "complete:first", "start:second", "complete:second"]

    await queue.shutdown()


@pytest.mark.asyncio
async def test_queue_honours_higher_concurrency() -> None:
    running = 0
    peak = 0

    async def executor(request: AnalysisRequest) -> InsightResult:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_concurrent=2)
    ids = [queue.enqueue(_request(f"Topic {index}"), lambda result: None, lambda error: None) for index in range(4)]

    for entry_id in ids:
        assert await queue.get(entry_id).wait(timeout=2.0)
    assert peak == 2

    await queue.shutdown()


@pytest.mark.asyncio
async def test_cancel_pending_entry_suppresses_callbacks() -> None:
    log = CallbackLog()
    release = asyncio.Event()

    async def executor(request: AnalysisRequest) -> InsightResult:
        await release.wait()
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_concurrent=1)
    running_id = queue.enqueue(_request("running"), *log.callbacks("running"))
    pending_id = queue.enqueue(_request("pending"), *log.callbacks("pending"))

    assert queue.cancel(pending_id) is True
    assert queue.cancel(pending_id) is False
    assert queue.cancel(running_id) is False
    assert queue.cancel("missing") is False
    assert queue.get(pending_id).status == CANCELED
    assert queue.pending_count == 0

    release.set()
    assert await queue.get(running_id).wait(timeout=1.0)
    await asyncio.sleep(0.01)

    assert log.terminal_count("running") == 1
    assert log.terminal_count("pending") == 0

    await queue.shutdown()


@pytest.mark.asyncio
async def test_validation_failures_surface_via_on_error() -> None:
    log = CallbackLog()
    calls: list[str] = []

    async def executor(request: AnalysisRequest) -> InsightResult:
        calls.append(request.topic)
        return _result(request.topic)

    queue = InsightRequestQueue(executor)
    short_id = queue.enqueue(_request("AB"), *log.callbacks("short"))
    valid_id = queue.enqueue(_request("Valid topic"), *log.callbacks("valid"))

    assert await queue.get(short_id).wait(timeout=1.0)
    assert await queue.get(valid_id).wait(timeout=1.0)

    assert isinstance(log.errors["short"], ValidationError)
    assert queue.get(short_id).status == FAILED
    assert calls == ["Valid topic"]
    assert log.terminal_count("valid") == 1

    await queue.shutdown()


@pytest.mark.asyncio
async def test_failures_do_not_stall_the_queue() -> None:
    log = CallbackLog()

    async def executor(request: AnalysisRequest) -> InsightResult:
        if request.topic == "upstream down":
            raise UpstreamHttpError(502, "Bad Gateway")
        if request.topic == "broken executor":
            raise RuntimeError("boom")
        return _result(request.topic)

    queue = InsightRequestQueue(executor)
    ids = [
        queue.enqueue(_request("upstream down"), *log.callbacks("http")),
        queue.enqueue(_request("broken executor"), *log.callbacks("runtime")),
        queue.enqueue(_request("healthy topic"), *log.callbacks("ok")),
    ]

    for entry_id in ids:
        assert await queue.get(entry_id).wait(timeout=1.0)

    assert isinstance(log.errors["http"], UpstreamHttpError)
    assert log.errors["http"].retryable is True
    assert isinstance(log.errors["runtime"], TransportError)
    assert "boom" in log.errors["runtime"].message
    assert log.results["ok"].summary == "Summary of healthy topic"

    await queue.shutdown()


@pytest.mark.asyncio
async def test_callback_exceptions_are_contained() -> None:
    async def executor(request: AnalysisRequest) -> InsightResult:
        return _result(request.topic)

    def exploding(result: InsightResult) -> None:
        raise RuntimeError("callback failure")

    completed: list[str] = []

    async def async_complete(result: InsightResult) -> None:
        completed.append(result.summary)

    queue = InsightRequestQueue(executor)
    first = queue.enqueue(_request("first topic"), exploding, lambda error: None)
    second = queue.enqueue(_request("second topic"), async_complete, lambda error: None)

    assert await queue.get(first).wait(timeout=1.0)
    assert await queue.get(second).wait(timeout=1.0)
    await asyncio.sleep(0.01)
    assert completed == ["Summary of second topic"]

    await queue.shutdown()


@pytest.mark.asyncio
async def test_progress_updates_stay_below_completion() -> None:
    log = CallbackLog()

    async def executor(request: AnalysisRequest) -> InsightResult:
        await asyncio.sleep(0.5)
        return _result(request.topic)

    queue = InsightRequestQueue(executor, progress_interval=0.01, rng=random.Random(3))
    entry_id = queue.enqueue(_request("Slow topic"), *log.callbacks("slow"))

    assert await queue.get(entry_id).wait(timeout=2.0)
    updates = log.progress["slow"]
    assert updates
    assert all(0 < value < 100 for value in updates)
    assert updates == sorted(updates)
    assert updates[-1] == 95

    await asyncio.sleep(0.05)
    assert log.progress["slow"] == updates

    await queue.shutdown()


@pytest.mark.asyncio
async def test_shutdown_resolves_outstanding_entries() -> None:
    log = CallbackLog()

    async def executor(request: AnalysisRequest) -> InsightResult:
        await asyncio.Event().wait()
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_concurrent=1)
    running_id = queue.enqueue(_request("running"), *log.callbacks("running"))
    pending_id = queue.enqueue(_request("pending"), *log.callbacks("pending"))
    await asyncio.sleep(0.01)

    await queue.shutdown()

    assert isinstance(log.errors["running"], TransportError)
    assert isinstance(log.errors["pending"], TransportError)
    assert log.terminal_count("running") == 1
    assert log.terminal_count("pending") == 1
    assert queue.get(running_id).status == FAILED
    assert queue.get(pending_id).status == FAILED
    with pytest.raises(RuntimeError):
        queue.enqueue(_request("late"), lambda result: None, lambda error: None)


@pytest.mark.asyncio
async def test_shutdown_resolves_entry_whose_task_never_started() -> None:
    log = CallbackLog()
    executed: list[str] = []

    async def executor(request: AnalysisRequest) -> InsightResult:
        executed.append(request.topic)
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_concurrent=1)
    entry_id = queue.enqueue(_request("unstarted"), *log.callbacks("unstarted"))
    # No await between enqueue and shutdown: the worker task is cancelled before its first step.
    await queue.shutdown()

    assert executed == []
    assert log.events == [("error", "unstarted")]
    assert isinstance(log.errors["unstarted"], TransportError)
    assert queue.get(entry_id).status == FAILED
    assert queue.active_count == 0
    assert queue.get(entry_id).is_terminal


@pytest.mark.asyncio
async def test_history_is_bounded() -> None:
    async def executor(request: AnalysisRequest) -> InsightResult:
        return _result(request.topic)

    queue = InsightRequestQueue(executor, max_history=2)
    ids = [queue.enqueue(_request(f"Topic {index}"), lambda result: None, lambda error: None) for index in range(4)]
    entries = [queue.get(entry_id) for entry_id in ids]
    for entry in entries:
        assert await entry.wait(timeout=1.0)

    assert queue.get(ids[0]) is None
    assert queue.get(ids[1]) is None
    assert queue.get(ids[3]) is not None

    await queue.shutdown()


@pytest.mark.asyncio
async def test_queue_with_mock_gateway_completes_analysis() -> None:
    log = CallbackLog()
    gateway = AIGateway(GatewayConfig(use_mock_data=True), rng=random.Random(11))
    queue = InsightRequestQueue(gateway.execute, max_concurrent=1)

    entry_id = queue.enqueue(AnalysisRequest(topic="AI ethics"), *log.callbacks("ethics"))
    entry = queue.get(entry_id)

    assert await entry.wait(timeout=3.0)
    result = log.results["ethics"]
    assert 3 <= len(result.key_concepts) <= 6
    assert 2 <= len(result.related_links) <= 4
    assert result.generation_time_ms >= 790
    assert log.terminal_count("ethics") == 1

    await queue.shutdown()
    await gateway.aclose()
