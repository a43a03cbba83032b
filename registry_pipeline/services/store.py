from __future__ import annotations

from datetime import datetime, timedelta
from itertools import count
from typing import Any
from uuid import uuid4

from registry_pipeline.schemas.jobs import AuditEntry, Job, JobStatus
from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, utcnow
from registry_pipeline.services.enrichment import overlay_quality_analysis
from registry_pipeline.services.repository import (
    JOB_STATUSES,
    UPSERT_COLUMNS,
    RepositoryConflictError,
    RepositoryNotFoundError,
)


class InMemoryStore:
    """Process-local job queue, record store and audit log.

    Backs tests and single-process runs without a database. Every mutating
    method completes without awaiting, so concurrent coroutines in one event
    loop see each claim as atomic.
    """

    def __init__(self) -> None:
        self.jobs: dict[str, Job] = {}
        self.records: dict[str, BusinessRecord] = {}
        self.audit_log: list[AuditEntry] = []
        self._org_index: dict[tuple[str, str], str] = {}
        self._sequence = count()
        self._job_sequence: dict[str, int] = {}

    async def enqueue(
        self,
        job_type: str,
        payload: dict[str, Any],
        priority: int = 0,
        *,
        created_at: datetime | None = None,
    ) -> str:
        job_id = str(uuid4())
        self.jobs[job_id] = Job(
            id=job_id,
            job_type=job_type,
            payload=dict(payload),
            priority=priority,
            created_at=created_at or utcnow(),
        )
        self._job_sequence[job_id] = next(self._sequence)
        return job_id

    async def claim(self, job_type: str, batch_size: int) -> list[Job]:
        pending = [job for job in self.jobs.values() if job.status == "pending" and job.job_type == job_type]
        pending.sort(key=lambda job: (-job.priority, job.created_at, self._job_sequence[job.id]))
        claimed: list[Job] = []
        now = utcnow()
        for job in pending[: max(0, batch_size)]:
            updated = job.model_copy(update={"status": "processing", "attempts": job.attempts + 1, "last_attempt": now})
            self.jobs[job.id] = updated
            claimed.append(updated)
        return claimed

    async def mark_status(self, job_id: str, status: JobStatus, error: str | None = None) -> None:
        if status not in JOB_STATUSES:
            raise RepositoryConflictError(f"unsupported job status: {status}")
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        changes: dict[str, Any] = {"status": status, "last_attempt": utcnow()}
        if error is not None:
            changes["error_message"] = error
        self.jobs[job_id] = job.model_copy(update=changes)

    async def queue_stats(self) -> list[dict[str, Any]]:
        counts: dict[tuple[str, str], int] = {}
        for job in self.jobs.values():
            key = (job.job_type, job.status)
            counts[key] = counts.get(key, 0) + 1
        return [
            {"job_type": job_type, "status": status, "count": total}
            for (job_type, status), total in sorted(counts.items())
        ]

    async def requeue_stale_processing(self, *, older_than_seconds: int, limit: int) -> int:
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        stale = [
            job
            for job in self.jobs.values()
            if job.status == "processing" and job.last_attempt is not None and job.last_attempt <= cutoff
        ]
        stale.sort(key=lambda job: job.last_attempt or cutoff)
        requeued = stale[: max(0, limit)]
        for job in requeued:
            self.jobs[job.id] = job.model_copy(update={"status": "pending"})
        return len(requeued)

    async def upsert_by_org_number(self, country_code: str, org_number: str, fields: dict[str, Any]) -> BusinessRecord:
        unknown = set(fields) - UPSERT_COLUMNS
        if unknown:
            raise RepositoryConflictError(f"unsupported record fields: {', '.join(sorted(unknown))}")

        now = utcnow()
        existing_id = self._org_index.get((country_code, org_number))
        if existing_id is not None:
            current = self.records[existing_id]
            merged = current.model_dump()
            merged.update(fields)
            merged["updated_at"] = now
            record = BusinessRecord.model_validate(merged)
        else:
            if "legal_name" not in fields:
                raise RepositoryConflictError("legal_name is required for new records")
            record = BusinessRecord.model_validate(
                {
                    **fields,
                    "id": str(uuid4()),
                    "country_code": country_code,
                    "org_number": org_number,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            self._org_index[(country_code, org_number)] = record.id
        self.records[record.id] = record
        return record

    async def find_by_id(self, record_id: str) -> BusinessRecord | None:
        return self.records.get(record_id)

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> BusinessRecord:
        unknown = set(fields) - UPSERT_COLUMNS
        if unknown:
            raise RepositoryConflictError(f"unsupported record fields: {', '.join(sorted(unknown))}")
        current = self.records.get(record_id)
        if current is None:
            raise RepositoryNotFoundError("business not found")

        changes = dict(fields)
        if "quality_analysis" in changes:
            changes["quality_analysis"] = overlay_quality_analysis(current.quality_analysis, changes["quality_analysis"])
        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = utcnow()
        record = BusinessRecord.model_validate(merged)
        self.records[record_id] = record
        return record

    async def delete_by_id(self, record_id: str) -> None:
        record = self.records.pop(record_id, None)
        if record is None:
            raise RepositoryNotFoundError("business not found")
        self._org_index.pop((record.country_code, record.org_number), None)

    async def query_recent(self, limit: int, *, since: datetime | None = None) -> list[BusinessRecord]:
        records = [record for record in self.records.values() if since is None or record.updated_at >= since]
        records.sort(key=lambda record: (record.updated_at, record.created_at), reverse=True)
        return records[: max(0, limit)]

    async def append_news_signals(self, record_id: str, signals: list[NewsSignal]) -> BusinessRecord:
        record = self.records.get(record_id)
        if record is None:
            raise RepositoryNotFoundError("business not found")
        updated = record.model_copy(update={"news_signals": [*record.news_signals, *signals], "updated_at": utcnow()})
        self.records[record_id] = updated
        return updated

    async def record(
        self,
        worker_name: str,
        action: str,
        related_entity_id: str | None,
        details: dict[str, Any],
        success: bool,
        *,
        url: str | None = None,
    ) -> None:
        self.audit_log.append(
            AuditEntry(
                worker_name=worker_name,
                action=action,
                related_entity_id=related_entity_id,
                url=url,
                details=dict(details),
                success=success,
            )
        )

    def add_record(self, record: BusinessRecord) -> BusinessRecord:
        """Insert a fully formed record as-is, keeping its id and timestamps."""
        key = (record.country_code, record.org_number)
        if key in self._org_index:
            raise RepositoryConflictError(f"duplicate org number {record.country_code}/{record.org_number}")
        self.records[record.id] = record
        self._org_index[key] = record.id
        return record
