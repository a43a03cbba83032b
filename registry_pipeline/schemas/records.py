from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

CompanyStatus = Literal["Active", "Dissolved", "Liquidation", "Inactive", "Unknown"]
VatStatus = Literal["Active", "Inactive", "Unknown"]
Sentiment = Literal["positive", "neutral", "negative"]
VerificationStatus = Literal["pending", "verified", "failed"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistryData(BaseModel):
    """Snapshot from an official registry. Replaced wholesale on every re-fetch."""

    model_config = ConfigDict(extra="allow")

    org_nr: str | None = None
    vat_number: str | None = None
    vat_status: VatStatus | None = None
    last_verified_registry: datetime | None = None
    legal_name: str | None = None
    registered_address: str | None = None
    registration_date: str | None = None
    company_status: CompanyStatus | None = None
    industry_codes: list[str] | None = None
    employee_count: int | None = None
    country_code: str | None = None
    company_type: str | None = None
    established_date: str | None = None
    source_url: str | None = None


class QualityAnalysis(BaseModel):
    """Content and AI findings. Merged field by field, never overwritten."""

    model_config = ConfigDict(extra="allow")

    website_url: str | None = None
    has_ssl: bool | None = None
    content_freshness: str | None = None
    professional_email: bool | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    industry_category: str | None = None
    ai_summary: str | None = None
    quality_score: float | None = None
    last_analyzed: datetime | None = None
    red_flags: list[str] | None = None
    indexed_pages: list[dict[str, Any]] | None = None
    total_pages: int | None = None
    last_indexed: datetime | None = None


class NewsSignal(BaseModel):
    date: datetime
    sentiment: Sentiment = "neutral"
    impact_score: float = Field(default=5.0, ge=0, le=10)
    source: str
    headline: str | None = None
    url: str | None = None


class BusinessRecord(BaseModel):
    id: str
    org_number: str
    legal_name: str
    country_code: str
    domain: str | None = None
    registry_data: RegistryData | None = None
    quality_analysis: QualityAnalysis | None = None
    news_signals: list[NewsSignal] = Field(default_factory=list)
    trust_score: int = 0
    trust_score_breakdown: dict[str, int] = Field(default_factory=dict)
    company_description: str | None = None
    logo_url: str | None = None
    social_media: dict[str, str | None] = Field(default_factory=dict)
    sitelinks: list[dict[str, Any]] = Field(default_factory=list)
    product_categories: list[str] = Field(default_factory=list)
    translations: dict[str, Any] = Field(default_factory=dict)
    verification_status: VerificationStatus = "pending"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_verified_at: datetime | None = None


class CandidateRecord(BaseModel):
    """Raw observation handed over by a source adapter."""

    org_number: str
    legal_name: str
    country_code: str
    registry_data: RegistryData = Field(default_factory=RegistryData)
    domain: str | None = None
