from __future__ import annotations

from datetime import datetime
from typing import Any

from registry_pipeline.core.domains import normalize_domain
from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, QualityAnalysis, utcnow
from registry_pipeline.services.interfaces import RecordStore
from registry_pipeline.services.repository import RepositoryNotFoundError, quality_changes
from registry_pipeline.services.trust import TrustScorer


def overlay_quality_analysis(
    current: QualityAnalysis | None,
    patch: QualityAnalysis | dict[str, Any] | None,
) -> QualityAnalysis:
    """Overlay only the fields set in ``patch``.

    ``None`` values in the patch are ignored, so an analysis run that could not
    determine a field never erases what an earlier run found.
    """
    base = current.model_dump(mode="json", exclude_none=True) if current else {}
    return QualityAnalysis.model_validate({**base, **quality_changes(patch)})


def assign_domain(record: BusinessRecord, raw_domain: str | None, *, now: datetime | None = None) -> BusinessRecord:
    """Set the bare hostname if none is known yet. Domains are not scoring inputs."""
    if record.domain:
        return record
    domain = normalize_domain(raw_domain)
    if domain is None:
        return record
    return record.model_copy(update={"domain": domain, "updated_at": now or utcnow()})


async def rescore_record(
    store: RecordStore,
    record_id: str,
    *,
    scorer: TrustScorer,
    now: datetime | None = None,
) -> BusinessRecord:
    """Recompute the trust score from the stored record and write back only the score columns."""
    record = await store.find_by_id(record_id)
    if record is None:
        raise RepositoryNotFoundError("business not found")
    scored = scorer.apply(record, now=now)
    return await store.update_fields(
        record_id,
        {"trust_score": scored.trust_score, "trust_score_breakdown": scored.trust_score_breakdown},
    )


async def ingest_news_signals(
    store: RecordStore,
    record_id: str,
    signals: list[NewsSignal],
    *,
    scorer: TrustScorer,
    now: datetime | None = None,
) -> BusinessRecord:
    """Append signals through the store, then persist the recomputed trust score."""
    await store.append_news_signals(record_id, signals)
    return await rescore_record(store, record_id, scorer=scorer, now=now)
