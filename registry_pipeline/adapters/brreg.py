from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from registry_pipeline.adapters.base import HttpJsonSourceAdapter
from registry_pipeline.core.domains import normalize_domain
from registry_pipeline.schemas.records import CandidateRecord, CompanyStatus, RegistryData, utcnow

BRREG_API_BASE = "https://data.brreg.no/enhetsregisteret/api"
_ORG_NUMBER_RE = re.compile(r"^\d{9}$")


class BrregAdapter(HttpJsonSourceAdapter):
    """Norwegian Central Coordinating Register for Legal Entities (Enhetsregisteret)."""

    name = "brreg"
    country_codes = ("NO",)
    base_url = f"{BRREG_API_BASE}/enheter"
    user_agent = "registry-pipeline-brreg/1.0"

    def build_query_params(self, query: dict[str, Any]) -> dict[str, Any]:
        params: dict[str, Any] = {"size": query.get("limit", 20)}
        if query.get("industry_code"):
            params["naeringskode"] = query["industry_code"]
        if query.get("query"):
            params["navn"] = query["query"]
        return params

    def parse_candidates(self, payload: Any, query: dict[str, Any]) -> Iterable[CandidateRecord]:
        if not isinstance(payload, dict):
            return
        embedded = payload.get("_embedded")
        units = embedded.get("enheter") if isinstance(embedded, dict) else None
        for unit in units or []:
            candidate = parse_unit(unit)
            if candidate is not None:
                yield candidate

    async def verify(self, org_number: str) -> bool:
        clean = re.sub(r"\s", "", org_number)
        if not _ORG_NUMBER_RE.match(clean):
            return False
        unit = await self.get_json(f"{self.base_url}/{clean}", allow_not_found=True)
        if not isinstance(unit, dict):
            return False
        return company_status(unit) == "Active"


def company_status(unit: dict[str, Any]) -> CompanyStatus:
    if unit.get("konkurs") or unit.get("slettedato"):
        return "Dissolved"
    if unit.get("underAvvikling") or unit.get("underTvangsavviklingEllerTvangsopplosning"):
        return "Liquidation"
    return "Active"


def parse_unit(unit: Any) -> CandidateRecord | None:
    if not isinstance(unit, dict):
        return None
    org_number = str(unit.get("organisasjonsnummer") or "").strip()
    legal_name = str(unit.get("navn") or "").strip()
    if not _ORG_NUMBER_RE.match(org_number) or not legal_name:
        return None

    vat_registered = bool(unit.get("registrertIMvaregisteret"))
    industry = unit.get("naeringskode1")
    industry_codes = (
        [f"{industry.get('kode')}: {industry.get('beskrivelse')}"]
        if isinstance(industry, dict) and industry.get("kode")
        else []
    )
    org_form = unit.get("organisasjonsform")

    registry_data = RegistryData(
        org_nr=org_number,
        vat_number=f"NO{org_number}MVA" if vat_registered else None,
        vat_status="Active" if vat_registered else "Unknown",
        last_verified_registry=utcnow(),
        legal_name=legal_name,
        registered_address=_format_address(unit.get("forretningsadresse")),
        registration_date=unit.get("registreringsdatoEnhetsregisteret"),
        company_status=company_status(unit),
        industry_codes=industry_codes,
        employee_count=unit.get("antallAnsatte"),
        country_code="NO",
        company_type=org_form.get("kode") if isinstance(org_form, dict) else None,
        established_date=unit.get("stiftelsesdato"),
        source_url=f"{BRREG_API_BASE}/enheter/{org_number}",
    )
    return CandidateRecord(
        org_number=org_number,
        legal_name=legal_name,
        country_code="NO",
        registry_data=registry_data,
        domain=normalize_domain(unit.get("hjemmeside")),
    )


def _format_address(address: Any) -> str | None:
    if not isinstance(address, dict):
        return None
    lines = [line for line in address.get("adresse") or [] if line]
    postal = " ".join(part for part in (address.get("postnummer"), address.get("poststed")) if part)
    parts = [*lines, postal, address.get("land")]
    formatted = ", ".join(part for part in parts if part)
    return formatted or None
