from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from registry_pipeline.jobs.dedupe_sweep import run_dedupe_sweep, run_maintenance_loop
from registry_pipeline.schemas.records import BusinessRecord
from registry_pipeline.services.store import InMemoryStore

BASE_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


def _record(record_id: str, legal_name: str, domain: str, *, country_code: str = "NO", minutes: int = 0) -> BusinessRecord:
    return BusinessRecord(
        id=record_id,
        org_number=f"org-{record_id}",
        legal_name=legal_name,
        country_code=country_code,
        domain=domain,
        created_at=BASE_TIME,
        updated_at=BASE_TIME + timedelta(minutes=minutes),
    )


def test_sweep_deletes_losers_and_audits_each_deletion() -> None:
    store = InMemoryStore()
    store.add_record(_record("no", "Example AS", "example.com", minutes=1))
    store.add_record(_record("se", "Example AB", "www.example.com", country_code="SE", minutes=2))
    store.add_record(_record("other", "Other AS", "other.no", minutes=3))

    summary = asyncio.run(run_dedupe_sweep(store, store, window_limit=100))

    assert summary == {"records": 3, "groups": 1, "deleted": 1, "failed_groups": 0}
    assert set(store.records) == {"no", "other"}
    (entry,) = store.audit_log
    assert entry.worker_name == "maintenance-dedupe"
    assert entry.action == "duplicate_removed"
    assert entry.related_entity_id == "se"
    assert entry.details["winner_id"] == "no"


def test_sweep_only_looks_at_recent_window() -> None:
    store = InMemoryStore()
    store.add_record(_record("old", "Example AS", "example.com", minutes=0))
    store.add_record(_record("new", "Example", "example.com", minutes=10))
    store.add_record(_record("newer", "Unrelated AS", "unrelated.no", minutes=20))

    summary = asyncio.run(run_dedupe_sweep(store, store, window_limit=2))

    assert summary["groups"] == 0
    assert len(store.records) == 3


def test_maintenance_loop_survives_failed_sweep(monkeypatch) -> None:
    store = InMemoryStore()
    calls: list[int] = []

    async def run() -> int:
        stop_event = asyncio.Event()

        async def flaky_query_recent(limit: int, *, since: datetime | None = None) -> list[BusinessRecord]:
            calls.append(limit)
            if len(calls) == 1:
                raise RuntimeError("connection lost")
            stop_event.set()
            return []

        monkeypatch.setattr(store, "query_recent", flaky_query_recent)
        return await asyncio.wait_for(
            run_maintenance_loop(store, store, window_limit=10, interval_seconds=0.01, stop_event=stop_event),
            timeout=2.0,
        )

    sweeps = asyncio.run(run())

    assert calls == [10, 10]
    assert sweeps == 1
