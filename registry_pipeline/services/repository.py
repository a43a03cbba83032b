from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from registry_pipeline.core.config import get_settings
from registry_pipeline.schemas.jobs import Job, JobStatus
from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, QualityAnalysis

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when a write violates a constraint or state transition rule."""


JOB_STATUSES = {"pending", "processing", "completed", "failed"}
JSON_RECORD_COLUMNS = (
    "registry_data",
    "quality_analysis",
    "news_signals",
    "trust_score_breakdown",
    "social_media",
    "sitelinks",
    "product_categories",
    "translations",
)
PLAIN_RECORD_COLUMNS = (
    "legal_name",
    "domain",
    "trust_score",
    "company_description",
    "logo_url",
    "verification_status",
    "last_verified_at",
)
UPSERT_COLUMNS = set(JSON_RECORD_COLUMNS) | set(PLAIN_RECORD_COLUMNS)

# Failures a method does not map itself surface as RepositoryUnavailableError.
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)

_RECORD_COLUMNS = """
  id::text as id,
  org_number,
  legal_name,
  country_code,
  domain,
  registry_data,
  quality_analysis,
  news_signals,
  trust_score,
  trust_score_breakdown,
  company_description,
  logo_url,
  social_media,
  sitelinks,
  product_categories,
  translations,
  verification_status,
  created_at,
  updated_at,
  last_verified_at
"""


def quality_changes(patch: QualityAnalysis | dict[str, Any] | None) -> dict[str, Any]:
    """Keys a quality patch actually sets, JSON-ready. Unset and ``None`` keys are left out."""
    if patch is None:
        return {}
    incoming = patch if isinstance(patch, QualityAnalysis) else QualityAnalysis.model_validate(patch)
    return incoming.model_dump(mode="json", exclude_unset=True, exclude_none=True)


class PostgresRepository:
    """Job queue, business record store and audit log on one asyncpg pool."""

    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def enqueue(self, job_type: str, payload: dict[str, Any], priority: int = 0) -> str:
        async with self._connection() as conn:
            job_id = await conn.fetchval(
                """
                insert into crawl_queue (job_type, payload, priority, status)
                values ($1, $2::jsonb, $3, 'pending')
                returning id::text
                """,
                job_type,
                json.dumps(payload, default=str),
                priority,
            )
        return str(job_id)

    async def claim(self, job_type: str, batch_size: int) -> list[Job]:
        if batch_size < 1:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                with next_jobs as (
                  select id
                  from crawl_queue
                  where status = 'pending' and job_type = $1
                  order by priority desc, created_at asc
                  limit $2
                  for update skip locked
                )
                update crawl_queue q
                set
                  status = 'processing',
                  attempts = q.attempts + 1,
                  last_attempt = now()
                from next_jobs n
                where q.id = n.id
                returning
                  q.id::text as id,
                  q.job_type,
                  q.payload,
                  q.status,
                  q.priority,
                  q.created_at,
                  q.attempts,
                  q.last_attempt,
                  q.error_message
                """,
                job_type,
                min(batch_size, 1000),
            )
        jobs = [self._job_row_to_model(row) for row in rows]
        jobs.sort(key=lambda job: (-job.priority, job.created_at))
        return jobs

    async def mark_status(self, job_id: str, status: JobStatus, error: str | None = None) -> None:
        if status not in JOB_STATUSES:
            raise RepositoryConflictError(f"unsupported job status: {status}")
        async with self._connection() as conn:
            try:
                updated = await conn.fetchval(
                    """
                    update crawl_queue
                    set
                      status = $2,
                      last_attempt = now(),
                      error_message = coalesce($3, error_message)
                    where id = $1::uuid
                    returning id::text
                    """,
                    job_id,
                    status,
                    error,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("job not found") from exc
        if updated is None:
            raise RepositoryNotFoundError("job not found")

    async def queue_stats(self) -> list[dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                select job_type, status, count(*)::int as count
                from crawl_queue
                group by job_type, status
                order by job_type asc, status asc
                """
            )
        return [{"job_type": row["job_type"], "status": row["status"], "count": row["count"]} for row in rows]

    async def requeue_stale_processing(self, *, older_than_seconds: int, limit: int) -> int:
        if limit < 1:
            return 0
        async with self._connection() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    with stale as (
                      select id
                      from crawl_queue
                      where status = 'processing'
                        and last_attempt is not null
                        and last_attempt <= now() - ($1::int * interval '1 second')
                      order by last_attempt asc
                      limit $2
                      for update skip locked
                    )
                    update crawl_queue q
                    set status = 'pending'
                    from stale s
                    where q.id = s.id
                    returning q.id::text as id
                    """,
                    older_than_seconds,
                    min(limit, 1000),
                )
        if rows:
            logger.warning("requeued stale processing jobs count=%s older_than_seconds=%s", len(rows), older_than_seconds)
        return len(rows)

    async def upsert_by_org_number(self, country_code: str, org_number: str, fields: dict[str, Any]) -> BusinessRecord:
        unknown = set(fields) - UPSERT_COLUMNS
        if unknown:
            raise RepositoryConflictError(f"unsupported record fields: {', '.join(sorted(unknown))}")

        columns = sorted(fields)
        values = [self._encode_column(column, fields[column]) for column in columns]
        if "legal_name" not in fields:
            # not null is checked before on conflict, so partial updates cannot go through insert.
            return await self._update_by_org_number(country_code, org_number, columns, values)
        insert_columns = ["country_code", "org_number", *columns]
        placeholders = ["$1", "$2"]
        for offset, column in enumerate(columns, start=3):
            placeholders.append(f"${offset}::jsonb" if column in JSON_RECORD_COLUMNS else f"${offset}")
        assignments = [f"{column} = excluded.{column}" for column in columns]
        assignments.append("updated_at = now()")

        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    insert into businesses ({", ".join(insert_columns)})
                    values ({", ".join(placeholders)})
                    on conflict (country_code, org_number) do update
                    set {", ".join(assignments)}
                    returning {_RECORD_COLUMNS}
                    """,
                    country_code,
                    org_number,
                    *values,
                )
            except (pg_exc.NotNullViolationError, pg_exc.CheckViolationError, asyncpg.DataError) as exc:
                raise RepositoryConflictError(str(exc)) from exc
        return self._record_row_to_model(row)

    async def _update_by_org_number(
        self,
        country_code: str,
        org_number: str,
        columns: list[str],
        values: list[Any],
    ) -> BusinessRecord:
        assignments = []
        for offset, column in enumerate(columns, start=3):
            cast = "::jsonb" if column in JSON_RECORD_COLUMNS else ""
            assignments.append(f"{column} = ${offset}{cast}")
        assignments.append("updated_at = now()")

        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    update businesses
                    set {", ".join(assignments)}
                    where country_code = $1 and org_number = $2
                    returning {_RECORD_COLUMNS}
                    """,
                    country_code,
                    org_number,
                    *values,
                )
            except (pg_exc.NotNullViolationError, pg_exc.CheckViolationError, asyncpg.DataError) as exc:
                raise RepositoryConflictError(str(exc)) from exc
        if row is None:
            raise RepositoryConflictError("legal_name is required for new records")
        return self._record_row_to_model(row)

    async def find_by_id(self, record_id: str) -> BusinessRecord | None:
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"select {_RECORD_COLUMNS} from businesses where id = $1::uuid",
                    record_id,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
                return None
        return self._record_row_to_model(row) if row else None

    async def update_fields(self, record_id: str, fields: dict[str, Any]) -> BusinessRecord:
        """Write only ``fields``; every other column keeps its stored value.

        ``quality_analysis`` is merged into the stored object with jsonb ``||``
        so only the keys the patch sets are replaced.
        """
        unknown = set(fields) - UPSERT_COLUMNS
        if unknown:
            raise RepositoryConflictError(f"unsupported record fields: {', '.join(sorted(unknown))}")

        assignments = ["updated_at = now()"]
        values: list[Any] = []
        for offset, column in enumerate(sorted(fields), start=2):
            if column == "quality_analysis":
                assignments.append(f"quality_analysis = coalesce(quality_analysis, '{{}}'::jsonb) || ${offset}::jsonb")
                values.append(json.dumps(quality_changes(fields[column])))
                continue
            cast = "::jsonb" if column in JSON_RECORD_COLUMNS else ""
            assignments.append(f"{column} = ${offset}{cast}")
            values.append(self._encode_column(column, fields[column]))

        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    update businesses
                    set {", ".join(assignments)}
                    where id = $1::uuid
                    returning {_RECORD_COLUMNS}
                    """,
                    record_id,
                    *values,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("business not found") from exc
            except (pg_exc.NotNullViolationError, pg_exc.CheckViolationError) as exc:
                raise RepositoryConflictError(str(exc)) from exc
        if row is None:
            raise RepositoryNotFoundError("business not found")
        return self._record_row_to_model(row)

    async def delete_by_id(self, record_id: str) -> None:
        async with self._connection() as conn:
            try:
                async with conn.transaction():
                    deleted = await conn.fetchval(
                        "delete from businesses where id = $1::uuid returning id::text",
                        record_id,
                    )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("business not found") from exc
            except pg_exc.ForeignKeyViolationError as exc:
                raise RepositoryConflictError(str(exc)) from exc
        if deleted is None:
            raise RepositoryNotFoundError("business not found")

    async def query_recent(self, limit: int, *, since: datetime | None = None) -> list[BusinessRecord]:
        if limit < 1:
            return []
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                select {_RECORD_COLUMNS}
                from businesses
                where $2::timestamptz is null or updated_at >= $2::timestamptz
                order by updated_at desc, created_at desc
                limit $1
                """,
                limit,
                since,
            )
        return [self._record_row_to_model(row) for row in rows]

    async def append_news_signals(self, record_id: str, signals: list[NewsSignal]) -> BusinessRecord:
        encoded = json.dumps([signal.model_dump(mode="json") for signal in signals])
        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    update businesses
                    set
                      news_signals = coalesce(news_signals, '[]'::jsonb) || $2::jsonb,
                      updated_at = now()
                    where id = $1::uuid
                    returning {_RECORD_COLUMNS}
                    """,
                    record_id,
                    encoded,
                )
            except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
                raise RepositoryNotFoundError("business not found") from exc
        if row is None:
            raise RepositoryNotFoundError("business not found")
        return self._record_row_to_model(row)

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
        async with self._connection() as conn:
            await conn.execute(
                """
                insert into crawl_logs (bot_name, action, business_id, url, details, success)
                values ($1, $2, $3::uuid, $4, $5::jsonb, $6)
                """,
                worker_name,
                action,
                related_entity_id,
                url,
                json.dumps(details, default=str),
                success,
            )

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                yield conn
        except _DRIVER_ERRORS as exc:
            raise RepositoryUnavailableError(f"database error: {exc.__class__.__name__}: {exc}") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RP_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _encode_column(column: str, value: Any) -> Any:
        if column not in JSON_RECORD_COLUMNS:
            return value
        if value is None:
            return None
        if hasattr(value, "model_dump"):
            value = value.model_dump(mode="json", exclude_none=True)
        elif isinstance(value, list):
            value = [item.model_dump(mode="json") if hasattr(item, "model_dump") else item for item in value]
        return json.dumps(value, default=str)

    @staticmethod
    def _decode_json(value: Any, default: Any) -> Any:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return default
        if value is None:
            return default
        return value

    @classmethod
    def _job_row_to_model(cls, row: asyncpg.Record) -> Job:
        payload = cls._decode_json(row["payload"], {})
        return Job(
            id=row["id"],
            job_type=row["job_type"],
            payload=payload if isinstance(payload, dict) else {},
            status=row["status"],
            priority=row["priority"],
            created_at=row["created_at"],
            attempts=row["attempts"],
            last_attempt=row["last_attempt"],
            error_message=row["error_message"],
        )

    @classmethod
    def _record_row_to_model(cls, row: asyncpg.Record) -> BusinessRecord:
        data = dict(row)
        data["registry_data"] = cls._decode_json(row["registry_data"], None)
        data["quality_analysis"] = cls._decode_json(row["quality_analysis"], None)
        data["news_signals"] = cls._decode_json(row["news_signals"], [])
        data["trust_score"] = row["trust_score"] or 0
        data["trust_score_breakdown"] = cls._decode_json(row["trust_score_breakdown"], {})
        data["social_media"] = cls._decode_json(row["social_media"], {})
        data["sitelinks"] = cls._decode_json(row["sitelinks"], [])
        data["product_categories"] = cls._decode_json(row["product_categories"], [])
        data["translations"] = cls._decode_json(row["translations"], {})
        return BusinessRecord.model_validate(data)


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
