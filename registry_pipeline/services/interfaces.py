from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from registry_pipeline.schemas.jobs import Job, JobStatus
from registry_pipeline.schemas.records import BusinessRecord, NewsSignal


class JobQueue(Protocol):
    async def enqueue(self, job_type: str, payload: dict[str, Any], priority: int = 0) -> str: ...

    async def claim(self, job_type: str, batch_size: int) -> list[Job]:
        """Move up to ``batch_size`` pending jobs to processing and return them.

        Highest priority first, oldest first within a priority. Two concurrent
        callers never receive the same job.
        """
        ...

    async def mark_status(self, job_id: str, status: JobStatus, error: str | None = None) -> None: ...


class RecordStore(Protocol):
    async def upsert_by_org_number(self, country_code: str, org_number: str, fields: dict[str, Any]) -> BusinessRecord: ...

    async def find_by_id(self, record_id: str) -> BusinessRecord | None: ...

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> BusinessRecord:
        """Write only the given columns and return the stored record.

        ``quality_analysis`` is overlaid key by key; every other column is
        replaced. Columns not named keep whatever a concurrent writer stored.
        """
        ...

    async def delete_by_id(self, record_id: str) -> None: ...

    async def query_recent(self, limit: int, *, since: datetime | None = None) -> list[BusinessRecord]: ...

    async def append_news_signals(self, record_id: str, signals: list[NewsSignal]) -> BusinessRecord: ...


class AuditLog(Protocol):
    async def record(
        self,
        worker_name: str,
        action: str,
        related_entity_id: str | None,
        details: dict[str, Any],
        success: bool,
        *,
        url: str | None = None,
    ) -> None: ...
