from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, QualityAnalysis, RegistryData
from registry_pipeline.services.enrichment import (
    assign_domain,
    ingest_news_signals,
    overlay_quality_analysis,
    rescore_record,
)
from registry_pipeline.services.repository import RepositoryNotFoundError
from registry_pipeline.services.store import InMemoryStore
from registry_pipeline.services.trust import TrustScorer

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _record(**overrides) -> BusinessRecord:
    values = {"id": "rec-1", "org_number": "914778271", "legal_name": "Fjord Data AS", "country_code": "NO"}
    values.update(overrides)
    return BusinessRecord(**values)


def test_registry_refetch_replaces_snapshot_and_rescores() -> None:
    store = InMemoryStore()

    async def run() -> BusinessRecord:
        created = await store.upsert_by_org_number(
            "NO",
            "914778271",
            {
                "legal_name": "Fjord Data AS",
                "registry_data": RegistryData(company_status="Active", vat_status="Active", employee_count=12),
            },
        )
        await store.upsert_by_org_number("NO", "914778271", {"registry_data": {"company_status": "Liquidation"}})
        return await rescore_record(store, created.id, scorer=TrustScorer(), now=NOW)

    updated = asyncio.run(run())

    assert updated.registry_data is not None
    assert updated.registry_data.company_status == "Liquidation"
    assert updated.registry_data.vat_status is None
    assert updated.registry_data.employee_count is None
    assert updated.trust_score_breakdown["registry_verified"] == 10
    assert updated.trust_score == 22


def test_quality_overlay_keeps_prior_findings() -> None:
    current = QualityAnalysis(has_ssl=True, ai_summary="Software consultancy", red_flags=["parked page"])

    merged = overlay_quality_analysis(current, {"professional_email": True, "ai_summary": None, "total_pages": 14})

    assert merged.has_ssl is True
    assert merged.ai_summary == "Software consultancy"
    assert merged.professional_email is True
    assert merged.total_pages == 14
    assert merged.red_flags == ["parked page"]


def test_quality_overlay_keeps_source_specific_keys() -> None:
    current = QualityAnalysis.model_validate({"full_text_indexed": "fjord data"})

    merged = overlay_quality_analysis(current, QualityAnalysis(has_ssl=False))

    assert merged.model_dump()["full_text_indexed"] == "fjord data"
    assert merged.has_ssl is False
    assert overlay_quality_analysis(None, None) == QualityAnalysis()


def test_ingest_news_signals_persists_recomputed_score() -> None:
    store = InMemoryStore()
    store.add_record(_record())
    signal = NewsSignal(date=NOW - timedelta(days=1), sentiment="positive", impact_score=10, source="dn")

    saved = asyncio.run(ingest_news_signals(store, "rec-1", [signal], scorer=TrustScorer(), now=NOW))

    assert saved.trust_score == 25
    assert store.records["rec-1"].trust_score == 25
    assert len(store.records["rec-1"].news_signals) == 1


def test_ingested_news_signals_keep_order() -> None:
    store = InMemoryStore()
    store.add_record(_record())
    first = NewsSignal(date=NOW - timedelta(days=2), sentiment="negative", impact_score=10, source="nrk")
    second = NewsSignal(date=NOW - timedelta(days=1), sentiment="negative", impact_score=10, source="e24")

    async def run() -> BusinessRecord:
        await ingest_news_signals(store, "rec-1", [first], scorer=TrustScorer(), now=NOW)
        return await ingest_news_signals(store, "rec-1", [second], scorer=TrustScorer(), now=NOW)

    updated = asyncio.run(run())

    assert [signal.source for signal in updated.news_signals] == ["nrk", "e24"]
    assert updated.trust_score_breakdown["news_sentiment"] == 0


def test_rescore_requires_existing_record() -> None:
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(rescore_record(InMemoryStore(), "missing", scorer=TrustScorer(), now=NOW))


def test_assign_domain_only_fills_missing_domain() -> None:
    record = _record()

    first = assign_domain(record, "https://www.FjordData.no/kontakt", now=NOW)
    second = assign_domain(first, "other.no", now=NOW)

    assert first.domain == "fjorddata.no"
    assert second is first
    assert assign_domain(record, "not a host") is record
