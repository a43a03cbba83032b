from __future__ import annotations

import logging
from typing import Any

from registry_pipeline.jobs.context import INDEX_JOB_PRIORITY, JOB_TYPE_INDEX, HandlerContext, as_text, bounded_int
from registry_pipeline.schemas.jobs import Job
from registry_pipeline.services.enrichment import assign_domain, rescore_record

logger = logging.getLogger(__name__)


async def execute_registry_import(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    """Pull one batch of companies from a national registry and upsert them.

    Registry data on an existing record is replaced wholesale. Records that
    arrive with a website get an ``index`` job queued.
    """
    payload = job.payload
    country = (as_text(payload.get("country")) or "").upper()
    if not country:
        return {"status": "skipped", "reason": "missing_country"}

    adapter = ctx.adapters.for_country(country)
    if adapter is None:
        return {"status": "skipped", "reason": "unsupported_country", "country": country}

    query: dict[str, Any] = {"country": country}
    industry_code = as_text(payload.get("industry_code"))
    if industry_code:
        query["industry_code"] = industry_code
    search = as_text(payload.get("query"))
    if search:
        query["query"] = search
    query["limit"] = bounded_int(payload.get("limit"), default=20, minimum=1, maximum=500)

    candidates = await adapter.fetch_candidates(query)

    upserted = 0
    queued_index_jobs = 0
    skipped = 0
    for candidate in candidates:
        if candidate.country_code.upper() != country:
            skipped += 1
            logger.warning(
                "registry candidate country mismatch org_number=%s expected=%s got=%s",
                candidate.org_number,
                country,
                candidate.country_code,
            )
            continue

        record = await ctx.store.upsert_by_org_number(
            country,
            candidate.org_number,
            {"legal_name": candidate.legal_name, "registry_data": candidate.registry_data},
        )
        with_domain = assign_domain(record, candidate.domain)
        if with_domain is not record:
            await ctx.store.update_fields(record.id, {"domain": with_domain.domain})
        record = await rescore_record(ctx.store, record.id, scorer=ctx.scorer)
        upserted += 1

        if record.domain:
            await ctx.queue.enqueue(
                JOB_TYPE_INDEX,
                {"business_id": record.id, "url": f"https://{record.domain}"},
                INDEX_JOB_PRIORITY,
            )
            queued_index_jobs += 1

    return {
        "status": "completed",
        "source": adapter.name,
        "country": country,
        "industry_code": industry_code,
        "fetched": len(candidates),
        "upserted": upserted,
        "skipped": skipped,
        "index_jobs_queued": queued_index_jobs,
    }
