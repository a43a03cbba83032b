from __future__ import annotations

from datetime import datetime
from typing import Any

from registry_pipeline.core.domains import is_professional_email
from registry_pipeline.schemas.records import BusinessRecord, RegistryData

FREE_EMAIL_RED_FLAG = "Uses free email provider"
WEBSITE_UNREACHABLE_RED_FLAG = "Website not accessible"
RULE_RED_FLAGS = frozenset({FREE_EMAIL_RED_FLAG, WEBSITE_UNREACHABLE_RED_FLAG})

REGISTRY_QUALITY_BASE = 5
REGISTRY_QUALITY_MAX = 10
LARGE_EMPLOYER_THRESHOLD = 10


def estimate_quality_from_registry(data: RegistryData | None) -> int:
    """1-10 quality estimate from registry facts, used when no AI analysis has run."""
    score = REGISTRY_QUALITY_BASE
    if data is None:
        return score
    if data.company_status == "Active":
        score += 2
    if data.employee_count and data.employee_count > LARGE_EMPLOYER_THRESHOLD:
        score += 1
    if data.industry_codes:
        score += 1
    if data.vat_status == "Active":
        score += 1
    return min(REGISTRY_QUALITY_MAX, score)


def rule_based_red_flags(
    existing: list[str] | None,
    *,
    website_accessible: bool,
    professional_email: bool | None,
) -> list[str]:
    """Replace the rule-derived flags in ``existing``; flags from other analysers are kept."""
    flags = [flag for flag in existing or [] if flag not in RULE_RED_FLAGS]
    if not website_accessible:
        flags.append(WEBSITE_UNREACHABLE_RED_FLAG)
    if professional_email is False:
        flags.append(FREE_EMAIL_RED_FLAG)
    return flags


def rule_based_analysis(
    record: BusinessRecord,
    *,
    website_accessible: bool,
    contact_email: str | None,
    now: datetime,
) -> dict[str, Any]:
    """Quality patch from the checks that need no AI model.

    A ``quality_score`` is only estimated while the record carries no AI
    summary; an AI-assigned score is left alone.
    """
    current = record.quality_analysis
    patch: dict[str, Any] = {"last_analyzed": now}
    if contact_email:
        professional = is_professional_email(contact_email)
        patch["contact_email"] = contact_email
        patch["professional_email"] = professional
    else:
        professional = current.professional_email if current else None

    patch["red_flags"] = rule_based_red_flags(
        current.red_flags if current else None,
        website_accessible=website_accessible,
        professional_email=professional,
    )
    if current is None or current.ai_summary is None:
        patch["quality_score"] = estimate_quality_from_registry(record.registry_data)
    return patch
