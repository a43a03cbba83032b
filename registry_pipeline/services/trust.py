from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Literal

from registry_pipeline.schemas.records import BusinessRecord, NewsSignal, QualityAnalysis, RegistryData

TrustScheme = Literal["signal", "completeness"]
TrustColor = Literal["green", "yellow", "red"]

REGISTRY_MAX = 40
QUALITY_MAX = 35
NEWS_MAX = 25
NEWS_NEUTRAL_SCORE = 12
NEWS_WINDOW_DAYS = 90

REGISTRY_STATUS_POINTS = {"Active": 30, "Liquidation": 10}
REGISTRY_VAT_ACTIVE_POINTS = 5
REGISTRY_INDUSTRY_CODES_POINTS = 5
QUALITY_SSL_POINTS = 5
QUALITY_PROFESSIONAL_EMAIL_POINTS = 5
QUALITY_AI_MULTIPLIER = 2.5
RED_FLAG_PENALTY = 3
RED_FLAG_PENALTY_MAX = 10

COMPLETENESS_REGISTRY_POINTS = 40
COMPLETENESS_POINTS = 5
DETAILED_DESCRIPTION_CHARS = 200
WELL_INDEXED_PAGES = 10

SCORE_EXPLANATIONS = {
    "registry_verified": "Verified in official registry",
    "has_description": "Company description provided",
    "has_logo": "Logo uploaded",
    "has_social": "Social media presence",
    "has_sitelinks": "Important pages indexed",
    "has_categories": "Products/services listed",
    "has_translations": "Multilingual content",
    "detailed_description": "Detailed profile (200+ characters)",
    "professional_email": "Professional contact email",
    "multi_social": "Multiple social platforms",
    "has_industry": "Industry identified",
    "has_ssl": "Secure website (SSL)",
    "well_indexed": "Comprehensive website (10+ pages)",
}


@dataclass(slots=True)
class TrustScore:
    score: int
    breakdown: dict[str, int]
    scheme: TrustScheme
    awarded: list[str] = field(default_factory=list)


def registry_score(data: RegistryData | None) -> int:
    """Registry component, 0-40. An active, VAT-registered, classified company tops out."""
    if data is None:
        return 0
    score = REGISTRY_STATUS_POINTS.get(data.company_status or "", 0)
    if data.vat_status == "Active":
        score += REGISTRY_VAT_ACTIVE_POINTS
    if data.industry_codes:
        score += REGISTRY_INDUSTRY_CODES_POINTS
    return min(score, REGISTRY_MAX)


def quality_score(analysis: QualityAnalysis | None) -> int:
    """Content quality component, 0-35, less up to 10 points for red flags."""
    if analysis is None:
        return 0

    flags = 0
    if analysis.has_ssl:
        flags += QUALITY_SSL_POINTS
    if analysis.professional_email:
        flags += QUALITY_PROFESSIONAL_EMAIL_POINTS

    ai_points = 0
    if analysis.quality_score:
        ai_quality = min(10.0, max(1.0, float(analysis.quality_score)))
        ai_points = round_half_up(QUALITY_AI_MULTIPLIER * ai_quality)

    score = min(QUALITY_MAX, flags + ai_points)
    if analysis.red_flags:
        score -= min(RED_FLAG_PENALTY_MAX, RED_FLAG_PENALTY * len(analysis.red_flags))
    return max(0, score)


def news_score(
    signals: Sequence[NewsSignal],
    *,
    now: datetime | None = None,
    window_days: int = NEWS_WINDOW_DAYS,
) -> int:
    """News component, 0-25, with 12 as the neutral baseline when nothing recent exists.

    Each signal in the trailing window counts +1/0/-1 weighted by
    ``impact_score / 10``; the weighted mean in [-1, 1] maps linearly onto
    the 0-25 range around 12.5.
    """
    current = _as_utc(now or datetime.now(timezone.utc))
    cutoff = current - timedelta(days=window_days)
    recent = [signal for signal in signals if _as_utc(signal.date) >= cutoff]
    if not recent:
        return NEWS_NEUTRAL_SCORE

    weighted = 0.0
    total_weight = 0.0
    for signal in recent:
        weight = signal.impact_score / 10
        total_weight += weight
        if signal.sentiment == "positive":
            weighted += weight
        elif signal.sentiment == "negative":
            weighted -= weight

    normalized = weighted / total_weight if total_weight > 0 else 0.0
    score = round_half_up(NEWS_MAX / 2 + normalized * NEWS_MAX / 2)
    return max(0, min(NEWS_MAX, score))


def calculate_signal_trust_score(
    registry_data: RegistryData | None,
    quality_analysis: QualityAnalysis | None,
    news_signals: Sequence[NewsSignal],
    *,
    now: datetime | None = None,
    window_days: int = NEWS_WINDOW_DAYS,
) -> TrustScore:
    breakdown = {
        "registry_verified": registry_score(registry_data),
        "quality_score": quality_score(quality_analysis),
        "news_sentiment": news_score(news_signals, now=now, window_days=window_days),
    }
    return TrustScore(score=_bounded_total(breakdown), breakdown=breakdown, scheme="signal")


def calculate_completeness_trust_score(record: BusinessRecord) -> TrustScore:
    """Flat five-point awards for profile completeness on top of a 40-point registry base."""
    analysis = record.quality_analysis or QualityAnalysis()
    description = record.company_description or ""
    social_count = sum(1 for value in record.social_media.values() if value)
    indexed_pages = analysis.total_pages or len(analysis.indexed_pages or [])
    industry = (analysis.industry_category or "").strip()

    awarded: list[str] = []
    breakdown = {"registry": 0, "completeness": 0, "data_quality": 0, "technical": 0}

    if _has_registry_data(record.registry_data):
        breakdown["registry"] = COMPLETENESS_REGISTRY_POINTS
        awarded.append("registry_verified")

    completeness_checks = {
        "has_description": bool(description.strip()),
        "has_logo": bool(record.logo_url),
        "has_social": social_count > 0,
        "has_sitelinks": bool(record.sitelinks),
        "has_categories": bool(record.product_categories),
        "has_translations": bool(record.translations),
    }
    quality_checks = {
        "detailed_description": len(description) > DETAILED_DESCRIPTION_CHARS,
        "professional_email": bool(analysis.professional_email),
        "multi_social": social_count >= 2,
        "has_industry": bool(industry) and industry.lower() != "unknown",
    }
    technical_checks = {
        "has_ssl": bool(analysis.has_ssl),
        "well_indexed": indexed_pages >= WELL_INDEXED_PAGES,
    }
    for component, checks in (
        ("completeness", completeness_checks),
        ("data_quality", quality_checks),
        ("technical", technical_checks),
    ):
        for name, passed in checks.items():
            if passed:
                breakdown[component] += COMPLETENESS_POINTS
                awarded.append(name)

    return TrustScore(
        score=_bounded_total(breakdown),
        breakdown=breakdown,
        scheme="completeness",
        awarded=awarded,
    )


@dataclass(slots=True)
class TrustScorer:
    """Recomputes the derived trust fields of a record with one fixed scheme."""

    scheme: TrustScheme = "signal"
    news_window_days: int = NEWS_WINDOW_DAYS

    def score(self, record: BusinessRecord, *, now: datetime | None = None) -> TrustScore:
        if self.scheme == "completeness":
            return calculate_completeness_trust_score(record)
        return calculate_signal_trust_score(
            record.registry_data,
            record.quality_analysis,
            record.news_signals,
            now=now,
            window_days=self.news_window_days,
        )

    def apply(self, record: BusinessRecord, *, now: datetime | None = None) -> BusinessRecord:
        result = self.score(record, now=now)
        return record.model_copy(
            update={"trust_score": result.score, "trust_score_breakdown": dict(result.breakdown)}
        )


def trust_score_color(score: int) -> TrustColor:
    if score >= 70:
        return "green"
    if score >= 40:
        return "yellow"
    return "red"


def trust_score_label_key(score: int) -> str:
    if score >= 80:
        return "highlyTrusted"
    if score >= 70:
        return "trusted"
    if score >= 50:
        return "moderatelyTrusted"
    if score >= 40:
        return "requiresVerification"
    if score >= 20:
        return "lowTrust"
    return "notVerified"


def score_explanations(awarded: Sequence[str]) -> list[str]:
    return [SCORE_EXPLANATIONS[key] for key in awarded if key in SCORE_EXPLANATIONS]


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; 12.5 must become 13.
    return int(math.floor(value + 0.5))


def _bounded_total(breakdown: dict[str, int]) -> int:
    return max(0, min(100, sum(breakdown.values())))


def _has_registry_data(data: RegistryData | None) -> bool:
    if data is None:
        return False
    return bool(data.model_dump(exclude_none=True))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
