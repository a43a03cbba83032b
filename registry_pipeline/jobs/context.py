from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from registry_pipeline.adapters.base import AdapterRegistry
from registry_pipeline.core.config import Settings
from registry_pipeline.services.interfaces import JobQueue, RecordStore
from registry_pipeline.services.trust import TrustScorer

JOB_TYPE_DISCOVER = "discover"
JOB_TYPE_REGISTRY = "registry"
JOB_TYPE_INDEX = "index"
JOB_TYPE_VERIFY = "verify"

INDEX_JOB_PRIORITY = 40


@dataclass(slots=True)
class HandlerContext:
    store: RecordStore
    queue: JobQueue
    scorer: TrustScorer
    adapters: AdapterRegistry
    settings: Settings
    http_client: httpx.AsyncClient | None = None


def as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def bounded_int(value: Any, *, default: int, minimum: int, maximum: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return min(maximum, max(minimum, parsed))
