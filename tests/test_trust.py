from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, QualityAnalysis, RegistryData
from registry_pipeline.services.trust import (
    TrustScorer,
    calculate_completeness_trust_score,
    calculate_signal_trust_score,
    news_score,
    quality_score,
    registry_score,
    round_half_up,
    score_explanations,
    trust_score_color,
    trust_score_label_key,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _record(**overrides) -> BusinessRecord:
    values = {
        "id": "rec-1",
        "org_number": "923609016",
        "legal_name": "Equinor ASA",
        "country_code": "NO",
    }
    values.update(overrides)
    return BusinessRecord(**values)


def _signal(days_ago: int, sentiment: str, impact: float = 5.0) -> NewsSignal:
    return NewsSignal(date=NOW - timedelta(days=days_ago), sentiment=sentiment, impact_score=impact, source="test")


def test_empty_inputs_score_neutral_news_only() -> None:
    result = calculate_signal_trust_score(None, None, [], now=NOW)

    assert result.score == 12
    assert result.breakdown == {"registry_verified": 0, "quality_score": 0, "news_sentiment": 12}


def test_active_company_without_website_or_news() -> None:
    result = calculate_signal_trust_score(RegistryData(company_status="Active"), QualityAnalysis(), [], now=NOW)

    assert result.breakdown["registry_verified"] == 30
    assert result.breakdown["quality_score"] == 0
    assert result.score == 42


@pytest.mark.parametrize(
    ("data", "expected"),
    [
        (RegistryData(), 0),
        (RegistryData(company_status="Dissolved"), 0),
        (RegistryData(company_status="Liquidation"), 10),
        (RegistryData(company_status="Active", vat_status="Active"), 35),
        (RegistryData(company_status="Active", vat_status="Active", industry_codes=["62.010: Programmering"]), 40),
        (RegistryData(company_status="Active", industry_codes=[]), 30),
    ],
)
def test_registry_score_table(data: RegistryData, expected: int) -> None:
    assert registry_score(data) == expected


def test_quality_score_combines_flags_and_ai_quality() -> None:
    analysis = QualityAnalysis(has_ssl=True, professional_email=True, quality_score=8)

    assert quality_score(analysis) == 30


def test_quality_score_clamps_ai_quality_and_caps_total() -> None:
    analysis = QualityAnalysis(has_ssl=True, professional_email=True, quality_score=42)

    assert quality_score(analysis) == 35


def test_quality_score_red_flags_cost_at_most_ten_points() -> None:
    assert quality_score(QualityAnalysis(has_ssl=True, quality_score=6, red_flags=["a"])) == 17
    assert quality_score(QualityAnalysis(quality_score=2, red_flags=["a", "b", "c", "d", "e"])) == 0


def test_news_score_weights_sentiment_by_impact() -> None:
    signals = [_signal(3, "positive", impact=8), _signal(10, "negative", impact=2)]

    # (0.8 - 0.2) / 1.0 = 0.6 -> 12.5 + 7.5
    assert news_score(signals, now=NOW) == 20


def test_news_score_ignores_signals_outside_window() -> None:
    signals = [_signal(120, "negative", impact=10)]

    assert news_score(signals, now=NOW) == 12
    assert news_score(signals, now=NOW, window_days=180) == 0


def test_news_score_neutral_signals_round_half_up() -> None:
    assert news_score([_signal(1, "neutral")], now=NOW) == 13


def test_news_score_all_positive_hits_maximum() -> None:
    assert news_score([_signal(1, "positive", impact=10)], now=NOW) == 25


def test_news_score_treats_naive_dates_as_utc() -> None:
    naive = NewsSignal(date=datetime(2024, 5, 30), sentiment="positive", impact_score=10, source="test")

    assert news_score([naive], now=NOW) == 25


def test_round_half_up() -> None:
    assert round_half_up(12.5) == 13
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2


def test_score_is_bounded_integer_and_breakdown_sums_to_total() -> None:
    result = calculate_signal_trust_score(
        RegistryData(company_status="Active", vat_status="Active", industry_codes=["46"]),
        QualityAnalysis(has_ssl=True, professional_email=True, quality_score=10),
        [_signal(1, "positive", impact=10)],
        now=NOW,
    )

    assert result.score == 100
    assert isinstance(result.score, int)
    assert sum(result.breakdown.values()) == result.score


def test_scorer_apply_is_idempotent() -> None:
    scorer = TrustScorer()
    record = _record(
        registry_data=RegistryData(company_status="Active"),
        news_signals=[_signal(5, "positive", impact=6)],
    )

    once = scorer.apply(record, now=NOW)
    twice = scorer.apply(once, now=NOW)

    assert once.trust_score == twice.trust_score
    assert once.trust_score_breakdown == twice.trust_score_breakdown
    assert once == twice


def test_completeness_scheme_awards_five_point_blocks() -> None:
    record = _record(
        registry_data=RegistryData(org_nr="923609016"),
        company_description="x" * 250,
        logo_url="https://cdn.example.com/logo.png",
        social_media={"linkedin": "https://linkedin.com/company/x", "facebook": "https://facebook.com/x", "x": None},
        quality_analysis=QualityAnalysis(
            has_ssl=True,
            professional_email=True,
            industry_category="Energy",
            total_pages=12,
        ),
    )

    result = calculate_completeness_trust_score(record)

    assert result.breakdown == {"registry": 40, "completeness": 15, "data_quality": 20, "technical": 10}
    assert result.score == 85
    assert "Verified in official registry" in score_explanations(result.awarded)
    assert "Comprehensive website (10+ pages)" in score_explanations(result.awarded)


def test_completeness_scheme_skips_registry_points_for_empty_snapshot() -> None:
    record = _record(registry_data=RegistryData(), quality_analysis=QualityAnalysis(industry_category="Unknown"))

    result = calculate_completeness_trust_score(record)

    assert result.score == 0
    assert result.awarded == []


def test_scorer_uses_configured_scheme() -> None:
    record = _record(registry_data=RegistryData(company_status="Active"))

    scored = TrustScorer(scheme="completeness").apply(record, now=NOW)

    assert scored.trust_score == 40
    assert set(scored.trust_score_breakdown) == {"registry", "completeness", "data_quality", "technical"}


@pytest.mark.parametrize(
    ("score", "color", "label"),
    [
        (95, "green", "highlyTrusted"),
        (72, "green", "trusted"),
        (55, "yellow", "moderatelyTrusted"),
        (41, "yellow", "requiresVerification"),
        (25, "red", "lowTrust"),
        (5, "red", "notVerified"),
    ],
)
def test_display_helpers(score: int, color: str, label: str) -> None:
    assert trust_score_color(score) == color
    assert trust_score_label_key(score) == label
