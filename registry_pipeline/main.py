from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from collections.abc import Sequence
from typing import Any

import httpx

from registry_pipeline.adapters.base import AdapterRegistry
from registry_pipeline.adapters.brreg import BrregAdapter
from registry_pipeline.core.config import Settings, get_settings
from registry_pipeline.core.telemetry import configure_logging, setup_telemetry, shutdown_telemetry
from registry_pipeline.jobs.context import JOB_TYPE_REGISTRY, HandlerContext
from registry_pipeline.jobs.dedupe_sweep import run_dedupe_sweep, run_maintenance_loop
from registry_pipeline.jobs.executor import build_default_registry
from registry_pipeline.jobs.worker import QueueWorker, WorkerOptions
from registry_pipeline.services.repository import get_repository
from registry_pipeline.services.store import InMemoryStore
from registry_pipeline.services.trust import TrustScorer

logger = logging.getLogger(__name__)

SEED_COUNTRY = "NO"
SEED_INDUSTRY_CODES = ("62", "26", "71", "73", "46")
SEED_PRIORITY = 60


def build_backend(settings: Settings) -> Any:
    """Postgres when a database URL is configured, otherwise a process-local store."""
    if settings.database_url:
        return get_repository()
    logger.warning("RP_DATABASE_URL is not set; using an in-memory store that is lost on exit")
    return InMemoryStore()


def build_adapters(settings: Settings, client: httpx.AsyncClient) -> AdapterRegistry:
    return AdapterRegistry([BrregAdapter(client=client, timeout_seconds=settings.http_timeout_seconds)])


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run_worker(settings: Settings, backend: Any, job_type: str) -> None:
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True) as client:
        context = HandlerContext(
            store=backend,
            queue=backend,
            scorer=TrustScorer(scheme=settings.trust_scheme, news_window_days=settings.news_window_days),
            adapters=build_adapters(settings, client),
            settings=settings,
            http_client=client,
        )
        handler = build_default_registry(context).handler_for(job_type)
        worker = QueueWorker(queue=backend, audit=backend, worker_name=settings.worker_name, stop_event=stop_event)
        await worker.run(
            job_type,
            handler,
            WorkerOptions(
                batch_size=settings.batch_size,
                poll_interval_seconds=settings.poll_interval_seconds,
                max_backoff_seconds=settings.max_backoff_seconds,
            ),
        )


async def run_dedupe(settings: Settings, backend: Any, *, once: bool) -> None:
    if once:
        summary = await run_dedupe_sweep(backend, backend, settings.dedupe_window_limit)
        print(json.dumps(summary))
        return
    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)
    await run_maintenance_loop(
        backend,
        backend,
        window_limit=settings.dedupe_window_limit,
        interval_seconds=settings.dedupe_interval_seconds,
        stop_event=stop_event,
    )


async def seed_registry_jobs(queue: Any) -> list[str]:
    job_ids: list[str] = []
    for industry_code in SEED_INDUSTRY_CODES:
        job_id = await queue.enqueue(
            JOB_TYPE_REGISTRY,
            {"country": SEED_COUNTRY, "industry_code": industry_code},
            SEED_PRIORITY,
        )
        job_ids.append(job_id)
    logger.info("seeded registry jobs count=%s", len(job_ids))
    return job_ids


async def run_command(args: argparse.Namespace, settings: Settings) -> None:
    backend = build_backend(settings)
    try:
        if args.command == "worker":
            await run_worker(settings, backend, args.job_type)
        elif args.command == "dedupe":
            await run_dedupe(settings, backend, once=args.once)
        elif args.command == "seed":
            job_ids = await seed_registry_jobs(backend)
            print(json.dumps({"enqueued": len(job_ids), "job_ids": job_ids}))
        elif args.command == "requeue-stale":
            requeued = await backend.requeue_stale_processing(
                older_than_seconds=args.older_than_minutes * 60,
                limit=args.limit,
            )
            print(json.dumps({"requeued": requeued}))
        elif args.command == "stats":
            print(json.dumps(await backend.queue_stats(), indent=2))
    finally:
        close = getattr(backend, "close", None)
        if close is not None:
            await close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="registry_pipeline", description="Business registry ingestion pipeline.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker = subparsers.add_parser("worker", help="Consume one job type from the crawl queue.")
    worker.add_argument("--job-type", required=True, help="Job type to claim, e.g. registry, index, discover, verify")

    dedupe = subparsers.add_parser("dedupe", help="Run the deduplication sweep.")
    dedupe.add_argument("--once", action="store_true", help="Run a single sweep and print its summary")

    subparsers.add_parser("seed", help="Enqueue the initial Norwegian registry import jobs.")

    requeue = subparsers.add_parser(
        "requeue-stale",
        help="Reset jobs stuck in processing back to pending. Only run once the owning worker is known dead.",
    )
    requeue.add_argument("--older-than-minutes", type=int, required=True, help="Minimum age of the last attempt")
    requeue.add_argument("--limit", type=int, default=100, help="Maximum number of jobs to reset")

    subparsers.add_parser("stats", help="Print job counts per type and status.")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging()
    telemetry_runtime = setup_telemetry(settings)
    try:
        asyncio.run(run_command(args, settings))
    finally:
        shutdown_telemetry(telemetry_runtime)


if __name__ == "__main__":
    main()
