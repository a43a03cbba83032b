#!/usr/bin/env python3
"""Emit deterministic DDL for the registry pipeline tables."""

from __future__ import annotations

import argparse

TABLES = ("crawl_queue", "businesses", "crawl_logs")


def _quote_ident(value: str) -> str:
    escaped = value.replace('"', '""')
    return f'"{escaped}"'


def _crawl_queue_ddl() -> str:
    return """create table if not exists crawl_queue (
  id uuid primary key default gen_random_uuid(),
  job_type text not null,
  payload jsonb not null default '{}'::jsonb,
  status text not null default 'pending'
    check (status in ('pending', 'processing', 'completed', 'failed')),
  priority integer not null default 0,
  created_at timestamptz not null default now(),
  attempts integer not null default 0,
  last_attempt timestamptz,
  error_message text
);

create index if not exists crawl_queue_claim_idx
  on crawl_queue (job_type, status, priority desc, created_at asc);
"""


def _businesses_ddl() -> str:
    return """create table if not exists businesses (
  id uuid primary key default gen_random_uuid(),
  org_number text not null,
  legal_name text not null,
  country_code text not null,
  domain text,
  registry_data jsonb,
  quality_analysis jsonb,
  news_signals jsonb not null default '[]'::jsonb,
  trust_score integer not null default 0 check (trust_score between 0 and 100),
  trust_score_breakdown jsonb not null default '{}'::jsonb,
  company_description text,
  logo_url text,
  social_media jsonb not null default '{}'::jsonb,
  sitelinks jsonb not null default '[]'::jsonb,
  product_categories jsonb not null default '[]'::jsonb,
  translations jsonb not null default '{}'::jsonb,
  verification_status text not null default 'pending'
    check (verification_status in ('pending', 'verified', 'failed')),
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now(),
  last_verified_at timestamptz,
  unique (country_code, org_number)
);

create index if not exists businesses_domain_idx on businesses (domain);
create index if not exists businesses_updated_at_idx on businesses (updated_at desc);
"""


def _crawl_logs_ddl() -> str:
    # business_id has no foreign key: audit rows outlive deleted duplicates.
    return """create table if not exists crawl_logs (
  id bigserial primary key,
  bot_name text not null,
  action text not null,
  business_id uuid,
  url text,
  details jsonb not null default '{}'::jsonb,
  success boolean not null,
  created_at timestamptz not null default now()
);

create index if not exists crawl_logs_business_idx on crawl_logs (business_id, created_at desc);
"""


_RENDERERS = {
    "crawl_queue": _crawl_queue_ddl,
    "businesses": _businesses_ddl,
    "crawl_logs": _crawl_logs_ddl,
}


def render_sql(*, tables: tuple[str, ...] = TABLES, schema: str | None = None) -> str:
    parts = ["-- Registry pipeline schema", "create extension if not exists pgcrypto;", ""]
    if schema:
        parts.append(f"create schema if not exists {_quote_ident(schema)};")
        parts.append(f"set search_path to {_quote_ident(schema)};")
        parts.append("")
    for table in tables:
        parts.append(_RENDERERS[table]())
    return "\n".join(parts)


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit DDL for the crawl queue, business and audit tables.")
    parser.add_argument(
        "--table",
        action="append",
        choices=list(TABLES),
        help="Only render the given table (repeatable). Defaults to all tables.",
    )
    parser.add_argument("--schema", help="Create and target this Postgres schema instead of the default one")
    args = parser.parse_args()
    selected = tuple(table for table in TABLES if table in args.table) if args.table else TABLES
    print(render_sql(tables=selected, schema=args.schema))


if __name__ == "__main__":
    main()
