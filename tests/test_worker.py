from __future__ import annotations

import asyncio
from typing import Any

from registry_pipeline.jobs.worker import QueueWorker, WorkerOptions
from registry_pipeline.schemas.jobs import Job
from registry_pipeline.services.repository import RepositoryUnavailableError
from registry_pipeline.services.store import InMemoryStore


def test_failing_job_is_isolated_from_sibling_in_same_batch() -> None:
    store = InMemoryStore()
    worker = QueueWorker(queue=store, audit=store)
    seen: list[str] = []

    async def handler(job: Job) -> dict[str, Any]:
        seen.append(job.payload["url"])
        if job.payload["url"] == "https://broken.no":
            raise RuntimeError("connection reset while indexing")
        return {"pages_indexed": 3}

    async def run():
        broken = await store.enqueue("index", {"business_id": "b1", "url": "https://broken.no"}, 50)
        healthy = await store.enqueue("index", {"business_id": "b2", "url": "https://healthy.no"}, 40)
        outcomes = await worker.run_once("index", handler, batch_size=5)
        return broken, healthy, outcomes

    broken, healthy, outcomes = asyncio.run(run())

    assert seen == ["https://broken.no", "https://healthy.no"]
    assert [outcome.status for outcome in outcomes] == ["failed", "completed"]
    assert store.jobs[broken].status == "failed"
    assert store.jobs[broken].error_message == "connection reset while indexing"
    assert store.jobs[healthy].status == "completed"
    assert store.jobs[healthy].error_message is None
    assert [entry.action for entry in store.audit_log] == [
        "job_claimed",
        "job_failed",
        "job_claimed",
        "job_completed",
    ]
    failed_entry = store.audit_log[1]
    assert failed_entry.worker_name == "queue-consumer-index"
    assert failed_entry.related_entity_id == "b1"
    assert failed_entry.url == "https://broken.no"
    assert failed_entry.success is False
    assert failed_entry.details["error"] == "connection reset while indexing"
    assert store.audit_log[3].details["result"] == {"pages_indexed": 3}


def test_exception_without_message_records_class_name() -> None:
    store = InMemoryStore()
    worker = QueueWorker(queue=store, audit=store, worker_name="indexer-1")

    async def handler(job: Job) -> dict[str, Any]:
        raise TimeoutError()

    async def run():
        job_id = await store.enqueue("index", {}, 0)
        await worker.run_once("index", handler)
        return job_id

    job_id = asyncio.run(run())

    assert store.jobs[job_id].error_message == "TimeoutError"
    assert {entry.worker_name for entry in store.audit_log} == {"indexer-1"}


def test_empty_queue_returns_no_outcomes() -> None:
    store = InMemoryStore()
    worker = QueueWorker(queue=store, audit=store)

    async def handler(job: Job) -> dict[str, Any]:
        raise AssertionError("should not be called")

    assert asyncio.run(worker.run_once("index", handler)) == []


def test_audit_failure_does_not_fail_the_job(monkeypatch) -> None:
    store = InMemoryStore()
    worker = QueueWorker(queue=store, audit=store)

    async def broken_record(*args: Any, **kwargs: Any) -> None:
        raise RepositoryUnavailableError("database unavailable")

    async def handler(job: Job) -> dict[str, Any]:
        return {"ok": True}

    monkeypatch.setattr(store, "record", broken_record)

    async def run():
        job_id = await store.enqueue("verify", {"business_id": "b1"}, 0)
        outcomes = await worker.run_once("verify", handler)
        return job_id, outcomes

    job_id, outcomes = asyncio.run(run())

    assert outcomes[0].status == "completed"
    assert store.jobs[job_id].status == "completed"


def test_run_stops_when_stop_event_is_set() -> None:
    store = InMemoryStore()
    processed: list[str] = []

    async def run():
        stop_event = asyncio.Event()
        worker = QueueWorker(queue=store, audit=store, stop_event=stop_event)

        async def handler(job: Job) -> dict[str, Any]:
            processed.append(job.id)
            if len(processed) == 2:
                worker.stop()
            return {}

        for _ in range(3):
            await store.enqueue("discover", {}, 0)
        await asyncio.wait_for(
            worker.run("discover", handler, WorkerOptions(batch_size=1, poll_interval_seconds=0.01)),
            timeout=2.0,
        )

    asyncio.run(run())

    assert len(processed) == 2
    assert sorted(job.status for job in store.jobs.values()) == ["completed", "completed", "pending"]


def test_run_backs_off_and_keeps_polling_after_claim_error() -> None:
    class FlakyQueue:
        def __init__(self, stop_event: asyncio.Event) -> None:
            self.calls = 0
            self.stop_event = stop_event

        async def enqueue(self, job_type: str, payload: dict[str, Any], priority: int = 0) -> str:
            raise NotImplementedError

        async def claim(self, job_type: str, batch_size: int) -> list[Job]:
            self.calls += 1
            if self.calls == 1:
                raise RepositoryUnavailableError("database unavailable")
            self.stop_event.set()
            return []

        async def mark_status(self, job_id: str, status: str, error: str | None = None) -> None:
            raise NotImplementedError

    async def handler(job: Job) -> dict[str, Any]:
        return {}

    async def run() -> int:
        stop_event = asyncio.Event()
        queue = FlakyQueue(stop_event)
        worker = QueueWorker(queue=queue, audit=InMemoryStore(), stop_event=stop_event)
        options = WorkerOptions(poll_interval_seconds=0.01, max_backoff_seconds=0.05)
        await asyncio.wait_for(worker.run("registry", handler, options), timeout=2.0)
        return queue.calls

    assert asyncio.run(run()) == 2
