from __future__ import annotations

from datetime import datetime, timezone

import pytest

from registry_pipeline.schemas.records import BusinessRecord, QualityAnalysis, RegistryData
from registry_pipeline.services.quality import (
    FREE_EMAIL_RED_FLAG,
    WEBSITE_UNREACHABLE_RED_FLAG,
    estimate_quality_from_registry,
    rule_based_analysis,
    rule_based_red_flags,
)

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _record(**overrides) -> BusinessRecord:
    values = {"id": "rec-1", "org_number": "914778271", "legal_name": "Fjord Data AS", "country_code": "NO"}
    values.update(overrides)
    return BusinessRecord(**values)


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (None, 5),
        (RegistryData(), 5),
        (RegistryData(company_status="Active"), 7),
        (RegistryData(company_status="Dissolved", employee_count=10), 5),
        (
            RegistryData(company_status="Active", employee_count=11, industry_codes=["62.010"], vat_status="Active"),
            10,
        ),
    ],
)
def test_estimate_quality_from_registry(data: RegistryData | None, expected: int) -> None:
    assert estimate_quality_from_registry(data) == expected


def test_rule_flags_are_recomputed_and_other_flags_kept() -> None:
    existing = ["Under construction", WEBSITE_UNREACHABLE_RED_FLAG]

    assert rule_based_red_flags(existing, website_accessible=True, professional_email=None) == ["Under construction"]
    assert rule_based_red_flags(None, website_accessible=False, professional_email=False) == [
        WEBSITE_UNREACHABLE_RED_FLAG,
        FREE_EMAIL_RED_FLAG,
    ]


def test_rule_analysis_estimates_score_without_ai_summary() -> None:
    record = _record(registry_data=RegistryData(company_status="Active", vat_status="Active"))

    patch = rule_based_analysis(record, website_accessible=True, contact_email="post@fjorddata.no", now=NOW)

    assert patch == {
        "last_analyzed": NOW,
        "contact_email": "post@fjorddata.no",
        "professional_email": True,
        "red_flags": [],
        "quality_score": 8,
    }


def test_rule_analysis_leaves_ai_score_alone_and_reuses_prior_email_finding() -> None:
    record = _record(
        quality_analysis=QualityAnalysis(ai_summary="Boat builder", quality_score=9, professional_email=False),
    )

    patch = rule_based_analysis(record, website_accessible=True, contact_email=None, now=NOW)

    assert "quality_score" not in patch
    assert "contact_email" not in patch
    assert patch["red_flags"] == [FREE_EMAIL_RED_FLAG]
