from __future__ import annotations

import logging
from typing import Any

import httpx

from registry_pipeline.core.domains import normalize_domain
from registry_pipeline.jobs.context import INDEX_JOB_PRIORITY, JOB_TYPE_INDEX, HandlerContext, as_text
from registry_pipeline.schemas.jobs import Job
from registry_pipeline.schemas.records import BusinessRecord
from registry_pipeline.services.dedupe import normalize_name
from registry_pipeline.services.enrichment import assign_domain
from registry_pipeline.services.repository import RepositoryNotFoundError

logger = logging.getLogger(__name__)

COUNTRY_TLDS: dict[str, tuple[str, ...]] = {
    "NO": (".no", ".com"),
    "SE": (".se", ".com"),
    "DK": (".dk", ".com"),
    "FI": (".fi", ".com"),
    "DE": (".de", ".com"),
    "FR": (".fr", ".com"),
    "ES": (".es", ".com"),
    "GB": (".co.uk", ".com"),
    "US": (".com",),
}
DEFAULT_TLDS = (".com",)
PROBE_TIMEOUT_SECONDS = 5.0


async def execute_discover(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    """Find the website of a business and queue it for indexing.

    An explicit ``url`` in the payload wins. Otherwise a known domain is
    reused, and as a last resort ``<bare name><country tld>`` guesses are
    probed until one answers.
    """
    business_id = as_text(job.payload.get("business_id"))
    if not business_id:
        raise ValueError("business_id is required")

    record = await ctx.store.find_by_id(business_id)
    if record is None:
        raise RepositoryNotFoundError("business not found")

    source = "payload"
    domain = normalize_domain(as_text(job.payload.get("url")))
    if domain is None and record.domain:
        domain = record.domain
        source = "existing"
    if domain is None:
        source = "probe"
        if ctx.http_client is not None:
            domain = await probe_domain_candidates(ctx.http_client, record, user_agent=ctx.settings.http_user_agent)
        else:
            async with httpx.AsyncClient(timeout=PROBE_TIMEOUT_SECONDS, follow_redirects=True) as client:
                domain = await probe_domain_candidates(client, record, user_agent=ctx.settings.http_user_agent)

    if domain is None:
        logger.info("no website found business_id=%s legal_name=%s", record.id, record.legal_name)
        return {"status": "completed", "business_id": record.id, "reason": "no_website_found"}

    updated = assign_domain(record, domain)
    if updated is not record:
        updated = await ctx.store.update_fields(record.id, {"domain": updated.domain})

    index_job_id = await ctx.queue.enqueue(
        JOB_TYPE_INDEX,
        {"business_id": updated.id, "url": f"https://{updated.domain}"},
        INDEX_JOB_PRIORITY,
    )
    return {
        "status": "completed",
        "business_id": updated.id,
        "domain": updated.domain,
        "source": source,
        "index_job_id": index_job_id,
    }


def domain_candidates(legal_name: str, country_code: str) -> list[str]:
    bare = normalize_name(legal_name)
    if not bare:
        return []
    tlds = COUNTRY_TLDS.get(country_code.upper(), DEFAULT_TLDS)
    return [f"{bare}{tld}" for tld in tlds]


async def probe_domain_candidates(
    client: httpx.AsyncClient,
    record: BusinessRecord,
    *,
    user_agent: str,
) -> str | None:
    for candidate in domain_candidates(record.legal_name, record.country_code):
        try:
            response = await client.head(f"https://{candidate}", headers={"User-Agent": user_agent})
        except httpx.HTTPError:
            continue
        if response.is_success:
            return candidate
    return None
