from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx

from registry_pipeline.schemas.records import CandidateRecord

logger = logging.getLogger(__name__)


class AdapterError(Exception):
    """Raised when a third-party source cannot be fetched or parsed."""


class SourceAdapter(ABC):
    """Hands the pipeline raw candidate records from one registry or feed."""

    name: str = "source"
    country_codes: tuple[str, ...] = ()

    @abstractmethod
    async def fetch_candidates(self, query: dict[str, Any]) -> list[CandidateRecord]: ...

    async def verify(self, org_number: str) -> bool:
        raise NotImplementedError(f"{self.name} does not support verification")


class HttpJsonSourceAdapter(SourceAdapter):
    """Base for adapters that read a JSON API over HTTP.

    Every request carries ``timeout_seconds``; timeouts, transport errors,
    non-2xx responses and undecodable bodies all surface as ``AdapterError``.
    """

    base_url: str = ""
    user_agent: str = "registry-pipeline/1.0"

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout_seconds: float = 15.0) -> None:
        self._client = client
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def build_query_params(self, query: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def parse_candidates(self, payload: Any, query: dict[str, Any]) -> Iterable[CandidateRecord]: ...

    async def fetch_candidates(self, query: dict[str, Any]) -> list[CandidateRecord]:
        payload = await self.get_json(self.base_url, params=self.build_query_params(query))
        candidates = list(self.parse_candidates(payload, query))
        logger.info("adapter fetched source=%s candidates=%s", self.name, len(candidates))
        return candidates

    async def get_json(self, url: str, *, params: dict[str, Any] | None = None, allow_not_found: bool = False) -> Any:
        """GET ``url`` and decode the body; a 404 gives ``None`` when ``allow_not_found`` is set."""
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(url, params=params, headers=headers)
            if allow_not_found and response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise AdapterError(f"{self.name} timed out after {self.timeout_seconds}s") from exc
        except httpx.HTTPStatusError as exc:
            raise AdapterError(f"{self.name} returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise AdapterError(f"{self.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise AdapterError(f"{self.name} returned invalid JSON") from exc


class AdapterRegistry:
    def __init__(self, adapters: Iterable[SourceAdapter] = ()) -> None:
        self._by_country: dict[str, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        for country_code in adapter.country_codes:
            self._by_country[country_code.upper()] = adapter

    def for_country(self, country_code: str | None) -> SourceAdapter | None:
        if not country_code:
            return None
        return self._by_country.get(country_code.upper())

    def countries(self) -> list[str]:
        return sorted(self._by_country)
