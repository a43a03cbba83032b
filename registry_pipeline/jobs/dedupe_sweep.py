from __future__ import annotations

import asyncio
import logging
from typing import Any

from opentelemetry import trace

from registry_pipeline.services.dedupe import find_duplicate_groups, resolve_duplicate_groups
from registry_pipeline.services.interfaces import AuditLog, RecordStore

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEDUPE_WORKER_NAME = "maintenance-dedupe"


async def run_dedupe_sweep(
    store: RecordStore,
    audit: AuditLog,
    window_limit: int,
    *,
    worker_name: str = DEDUPE_WORKER_NAME,
) -> dict[str, Any]:
    """One deduplication pass over the ``window_limit`` most recently updated records."""
    with tracer.start_as_current_span("dedupe.sweep") as span:
        records = await store.query_recent(window_limit)
        groups = find_duplicate_groups(records)
        span.set_attribute("dedupe.records", len(records))
        span.set_attribute("dedupe.groups", len(groups))

        summary = await resolve_duplicate_groups(groups, store=store, audit=audit, worker_name=worker_name)
        span.set_attribute("dedupe.deleted", summary.deleted)
        logger.info(
            "dedupe sweep done records=%s groups=%s deleted=%s failed_groups=%s",
            len(records),
            summary.groups,
            summary.deleted,
            summary.failed_groups,
        )
        return {
            "records": len(records),
            "groups": summary.groups,
            "deleted": summary.deleted,
            "failed_groups": summary.failed_groups,
        }


async def run_maintenance_loop(
    store: RecordStore,
    audit: AuditLog,
    *,
    window_limit: int,
    interval_seconds: float,
    stop_event: asyncio.Event,
    worker_name: str = DEDUPE_WORKER_NAME,
) -> int:
    """Sweep every ``interval_seconds`` until ``stop_event`` is set. Returns the number of completed sweeps."""
    sweeps = 0
    logger.info("maintenance loop started interval_seconds=%s window_limit=%s", interval_seconds, window_limit)
    while not stop_event.is_set():
        try:
            await run_dedupe_sweep(store, audit, window_limit, worker_name=worker_name)
            sweeps += 1
        except Exception as exc:
            logger.exception("dedupe sweep failed: %s", exc)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("maintenance loop stopped sweeps=%s", sweeps)
    return sweeps
