from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from opentelemetry import trace

from registry_pipeline.schemas.jobs import Job
from registry_pipeline.services.interfaces import AuditLog, JobQueue

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


@dataclass(slots=True)
class WorkerOptions:
    batch_size: int = 1
    poll_interval_seconds: float = 10.0
    max_backoff_seconds: float = 60.0


@dataclass(slots=True)
class JobOutcome:
    job_id: str
    status: Literal["completed", "failed"]
    duration_ms: float
    result: dict[str, Any] | None = None
    error: str | None = None


class QueueWorker:
    """At-least-once polling consumer for a single job type.

    A failed job is marked ``failed`` and left alone; re-running it is up to
    whoever enqueues work. Jobs left in ``processing`` by a crashed worker are
    not recovered here.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        audit: AuditLog,
        worker_name: str | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        self.queue = queue
        self.audit = audit
        self.worker_name = worker_name
        self.stop_event = stop_event or asyncio.Event()

    def stop(self) -> None:
        self.stop_event.set()

    def name_for(self, job_type: str) -> str:
        return self.worker_name or f"queue-consumer-{job_type}"

    async def run(self, job_type: str, handler: JobHandler, options: WorkerOptions | None = None) -> None:
        options = options or WorkerOptions()
        worker_name = self.name_for(job_type)
        backoff = options.poll_interval_seconds
        logger.info("worker started name=%s job_type=%s batch_size=%s", worker_name, job_type, options.batch_size)

        while not self.stop_event.is_set():
            try:
                with tracer.start_as_current_span("worker.poll_cycle") as span:
                    span.set_attribute("job.type", job_type)
                    outcomes = await self.run_once(job_type, handler, batch_size=options.batch_size)
                backoff = options.poll_interval_seconds
                if not outcomes:
                    await self._sleep(options.poll_interval_seconds)
            except Exception as exc:
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (2.0 + jitter), options.max_backoff_seconds)
                logger.exception("worker poll failed name=%s: %s; retry in %.1fs", worker_name, exc, sleep_for)
                await self._sleep(sleep_for)
                backoff = sleep_for

        logger.info("worker stopped name=%s job_type=%s", worker_name, job_type)

    async def run_once(self, job_type: str, handler: JobHandler, *, batch_size: int = 1) -> list[JobOutcome]:
        """Claim one batch and process it; an empty list means the queue was empty."""
        jobs = await self.queue.claim(job_type, batch_size)
        if not jobs:
            return []
        logger.info("processing jobs name=%s count=%s", self.name_for(job_type), len(jobs))
        outcomes: list[JobOutcome] = []
        for job in jobs:
            outcomes.append(await self.process_job(job, handler))
        return outcomes

    async def process_job(self, job: Job, handler: JobHandler) -> JobOutcome:
        worker_name = self.name_for(job.job_type)
        with tracer.start_as_current_span("worker.process_job") as span:
            span.set_attribute("job.id", job.id)
            span.set_attribute("job.type", job.job_type)
            await self._audit_safely(
                worker_name,
                "job_claimed",
                job,
                {"job_id": job.id, "attempts": job.attempts, "priority": job.priority},
                True,
            )

            started_at = time.perf_counter()
            try:
                result = await handler(job)
            except Exception as exc:
                duration_ms = (time.perf_counter() - started_at) * 1000.0
                message = str(exc) or exc.__class__.__name__
                logger.warning("job failed id=%s type=%s error=%s", job.id, job.job_type, message)
                span.set_attribute("job.status", "failed")
                await self._mark_safely(job, "failed", message)
                await self._audit_safely(
                    worker_name,
                    "job_failed",
                    job,
                    {"job_id": job.id, "error": message, "duration_ms": round(duration_ms, 2)},
                    False,
                )
                return JobOutcome(job_id=job.id, status="failed", duration_ms=duration_ms, error=message)

            duration_ms = (time.perf_counter() - started_at) * 1000.0
            logger.info("job completed id=%s type=%s duration_ms=%.2f", job.id, job.job_type, duration_ms)
            span.set_attribute("job.status", "completed")
            await self._mark_safely(job, "completed", None)
            await self._audit_safely(
                worker_name,
                "job_completed",
                job,
                {"job_id": job.id, "duration_ms": round(duration_ms, 2), "result": result},
                True,
            )
            return JobOutcome(job_id=job.id, status="completed", duration_ms=duration_ms, result=result)

    async def _mark_safely(self, job: Job, status: Literal["completed", "failed"], error: str | None) -> None:
        try:
            await self.queue.mark_status(job.id, status, error)
        except Exception:
            logger.exception("could not mark job id=%s status=%s", job.id, status)

    async def _audit_safely(
        self,
        worker_name: str,
        action: str,
        job: Job,
        details: dict[str, Any],
        success: bool,
    ) -> None:
        try:
            await self.audit.record(worker_name, action, job.business_id, details, success, url=job.url)
        except Exception:
            logger.exception("could not write audit entry action=%s job_id=%s", action, job.id)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
