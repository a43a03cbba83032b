from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from registry_pipeline.jobs.context import (
    JOB_TYPE_DISCOVER,
    JOB_TYPE_INDEX,
    JOB_TYPE_REGISTRY,
    JOB_TYPE_VERIFY,
    HandlerContext,
)
from registry_pipeline.jobs.discover import execute_discover
from registry_pipeline.jobs.index import execute_index
from registry_pipeline.jobs.registry_import import execute_registry_import
from registry_pipeline.jobs.verify import execute_verify
from registry_pipeline.schemas.jobs import Job

ContextHandler = Callable[[Job, HandlerContext], Awaitable[dict[str, Any]]]


class HandlerRegistry:
    """Explicit job type -> handler wiring, filled once at start-up."""

    def __init__(self, context: HandlerContext) -> None:
        self.context = context
        self._handlers: dict[str, ContextHandler] = {}

    def register(self, job_type: str, handler: ContextHandler) -> None:
        if job_type in self._handlers:
            raise ValueError(f"handler already registered for job type {job_type!r}")
        self._handlers[job_type] = handler

    def handler_for(self, job_type: str) -> Callable[[Job], Awaitable[dict[str, Any]]]:
        try:
            handler = self._handlers[job_type]
        except KeyError:
            raise KeyError(f"no handler registered for job type {job_type!r}") from None

        async def bound(job: Job) -> dict[str, Any]:
            return await handler(job, self.context)

        return bound

    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers


def build_default_registry(context: HandlerContext) -> HandlerRegistry:
    registry = HandlerRegistry(context)
    registry.register(JOB_TYPE_DISCOVER, execute_discover)
    registry.register(JOB_TYPE_REGISTRY, execute_registry_import)
    registry.register(JOB_TYPE_INDEX, execute_index)
    registry.register(JOB_TYPE_VERIFY, execute_verify)
    return registry
