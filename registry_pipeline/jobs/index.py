from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from registry_pipeline.adapters.base import AdapterError
from registry_pipeline.core.domains import domain_from_url
from registry_pipeline.jobs.context import HandlerContext, as_text, bounded_int
from registry_pipeline.schemas.jobs import Job
from registry_pipeline.schemas.records import utcnow
from registry_pipeline.services.enrichment import assign_domain, rescore_record
from registry_pipeline.services.quality import rule_based_analysis
from registry_pipeline.services.repository import RepositoryNotFoundError

logger = logging.getLogger(__name__)

_SKIPPED_PREFIXES = ("#", "mailto:", "tel:", "javascript:")


@dataclass(slots=True)
class IndexedPage:
    url: str
    title: str
    description: str

    def as_dict(self) -> dict[str, str]:
        return {"url": self.url, "title": self.title, "description": self.description}


@dataclass(slots=True)
class ParsedPage:
    title: str = ""
    description: str = ""
    links: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CrawlResult:
    pages: list[IndexedPage] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)


async def execute_index(job: Job, ctx: HandlerContext) -> dict[str, Any]:
    business_id = as_text(job.payload.get("business_id"))
    start_url = as_text(job.payload.get("url"))
    if not business_id:
        raise ValueError("business_id is required")
    if not start_url:
        raise ValueError("url is required")

    record = await ctx.store.find_by_id(business_id)
    if record is None:
        raise RepositoryNotFoundError("business not found")

    max_pages = bounded_int(
        job.payload.get("max_pages"),
        default=ctx.settings.index_max_pages,
        minimum=1,
        maximum=ctx.settings.index_max_pages,
    )
    if ctx.http_client is not None:
        crawl = await crawl_site(
            ctx.http_client,
            start_url,
            max_pages=max_pages,
            page_delay_seconds=ctx.settings.index_page_delay_seconds,
            user_agent=ctx.settings.http_user_agent,
        )
    else:
        async with httpx.AsyncClient(timeout=ctx.settings.http_timeout_seconds, follow_redirects=True) as client:
            crawl = await crawl_site(
                client,
                start_url,
                max_pages=max_pages,
                page_delay_seconds=ctx.settings.index_page_delay_seconds,
                user_agent=ctx.settings.http_user_agent,
            )

    now = utcnow()
    patch: dict[str, Any] = {
        "website_url": start_url,
        "has_ssl": urlparse(start_url).scheme.lower() == "https",
    }
    if not crawl.pages:
        patch.update(rule_based_analysis(record, website_accessible=False, contact_email=None, now=now))
        await ctx.store.update_fields(record.id, {"quality_analysis": patch})
        await rescore_record(ctx.store, record.id, scorer=ctx.scorer, now=now)
        raise AdapterError("No pages indexed")

    patch.update(
        {
            "indexed_pages": [page.as_dict() for page in crawl.pages],
            "total_pages": len(crawl.pages),
            "last_indexed": now,
        }
    )
    patch.update(
        rule_based_analysis(
            record,
            website_accessible=True,
            contact_email=crawl.emails[0] if crawl.emails else None,
            now=now,
        )
    )
    fields: dict[str, Any] = {"quality_analysis": patch}
    with_domain = assign_domain(record, domain_from_url(start_url), now=now)
    if with_domain is not record:
        fields["domain"] = with_domain.domain

    await ctx.store.update_fields(record.id, fields)
    saved = await rescore_record(ctx.store, record.id, scorer=ctx.scorer, now=now)
    logger.info("indexed website business_id=%s pages=%s trust_score=%s", saved.id, len(crawl.pages), saved.trust_score)
    return {
        "status": "completed",
        "business_id": saved.id,
        "url": start_url,
        "pages_indexed": len(crawl.pages),
        "trust_score": saved.trust_score,
    }


async def crawl_site(
    client: httpx.AsyncClient,
    start_url: str,
    *,
    max_pages: int,
    page_delay_seconds: float = 0.0,
    user_agent: str = "registry-pipeline-indexer/1.0",
) -> CrawlResult:
    """Breadth-first crawl of pages on the start URL's host.

    Pages that fail to load or answer with a non-2xx status are skipped. The
    client's own timeout applies to every request.
    """
    host = urlparse(start_url).hostname
    result = CrawlResult()
    visited: set[str] = set()
    pending: deque[str] = deque([start_url])

    while pending and len(result.pages) < max_pages:
        url = pending.popleft()
        if url in visited:
            continue
        visited.add(url)

        body = await _fetch_page(client, url, user_agent=user_agent)
        if body is None:
            continue

        page = parse_page(body, url, host)
        result.pages.append(IndexedPage(url=url, title=page.title, description=page.description))
        for email in page.emails:
            if email not in result.emails:
                result.emails.append(email)
        for link in page.links:
            if link not in visited:
                pending.append(link)

        if page_delay_seconds > 0 and pending:
            await asyncio.sleep(page_delay_seconds)

    return result


def parse_page(body: str, page_url: str, host: str | None) -> ParsedPage:
    soup = BeautifulSoup(body, "html.parser")
    parsed = ParsedPage()
    parsed.title = soup.title.get_text(" ", strip=True) if soup.title else ""
    meta = soup.find("meta", attrs={"name": "description"})
    if meta is not None and meta.get("content"):
        parsed.description = str(meta.get("content")).strip()

    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if href.lower().startswith("mailto:"):
            email = href[len("mailto:"):].split("?", 1)[0].strip().lower()
            if email and email not in parsed.emails:
                parsed.emails.append(email)
            continue
        link = _internal_link(href, page_url, host)
        if link is not None and link not in parsed.links:
            parsed.links.append(link)
    return parsed


def _internal_link(href: str, page_url: str, host: str | None) -> str | None:
    if not href or href.lower().startswith(_SKIPPED_PREFIXES):
        return None
    absolute, _ = urldefrag(urljoin(page_url, href))
    parsed = urlparse(absolute)
    if parsed.scheme not in {"http", "https"} or parsed.hostname != host:
        return None
    return absolute


async def _fetch_page(client: httpx.AsyncClient, url: str, *, user_agent: str) -> str | None:
    try:
        response = await client.get(url, headers={"User-Agent": user_agent})
    except httpx.HTTPError as exc:
        logger.debug("page fetch failed url=%s error=%s", url, exc)
        return None
    if not response.is_success:
        return None
    return response.text
