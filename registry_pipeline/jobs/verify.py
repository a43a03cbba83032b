from __future__ import annotations

from typing import Any

from registry_pipeline.jobs.context import HandlerContext, as_text
from registry_pipeline.schemas.jobs import Job
from registry_pipeline.schemas.records import utcnow
from registry_pipeline.services.repository import RepositoryNotFoundError


async def execute_verify(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    business_id = as_text(job.payload.get("business_id"))
    if not business_id:
        raise ValueError("business_id is required")

    record = await ctx.store.find_by_id(business_id)
    if record is None:
        raise RepositoryNotFoundError("business not found")

    adapter = ctx.adapters.for_country(record.country_code)
    if adapter is None:
        return {"status": "skipped", "reason": "unsupported_country", "country": record.country_code}

    verified = await adapter.verify(record.org_number)
    await ctx.store.update_fields(
        record.id,
        {"verification_status": "verified" if verified else "failed", "last_verified_at": utcnow()},
    )
    return {
        "status": "completed",
        "business_id": record.id,
        "source": adapter.name,
        "verified": verified,
    }
