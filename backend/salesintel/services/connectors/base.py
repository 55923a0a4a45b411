# backend/salesintel/services/connectors/base.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from ...core.config import get_settings

logger = logging.getLogger(__name__)


class ConnectorResult(dict):
    """Normalised payload handed back to the engine (JSON-serialisable)."""


class BaseConnector(ABC):
    """
    One third-party endpoint.

    Contract with the engine:
    - `fetch(company_name)` returns a ConnectorResult, or None when there is
      nothing to report (not configured, 404, other client errors).
    - 429 / 5xx / transport errors raise, so the engine's retry applies.
    """

    name: str

    def __init__(self) -> None:
        self.timeout = get_settings().HTTP_TIMEOUT_SECONDS

    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @abstractmethod
    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        ...

    async def __call__(self, company_name: str) -> Optional[ConnectorResult]:
        return await self.fetch(company_name)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.request(method, url, params=params, json=json, headers=headers)

        # 4xx (non-rate-limit) => "nothing to report"
        if 400 <= resp.status_code < 500 and resp.status_code != 429:
            logger.warning(
                "%s %s returned %s: %s",
                self.name,
                url,
                resp.status_code,
                resp.text[:500],
                extra={"source": self.name},
            )
            return None

        # 429 / 5xx: let the engine retry
        resp.raise_for_status()
        return resp.json()


CLEARBIT_AUTOCOMPLETE_URL = "https://autocomplete.clearbit.com/v1/companies/suggest"


def normalise_domain(raw: str | None) -> Optional[str]:
    if not raw:
        return None
    d = raw.strip().lower()
    if "://" in d:
        d = d.split("://", 1)[1]
    # Strip path/query
    d = d.split("/", 1)[0]
    # Strip port
    d = d.split(":", 1)[0]
    if d.startswith("www."):
        d = d[4:]
    return d or None


async def lookup_company_domain(company_name: str, timeout: float = 10.0) -> Optional[str]:
    """
    Best-effort name -> primary domain via the keyless Clearbit autocomplete
    endpoint. Returns None when nothing matches or the lookup fails.
    """
    name = (company_name or "").strip()
    if not name:
        return None
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.get(CLEARBIT_AUTOCOMPLETE_URL, params={"query": name})
        if resp.status_code != 200:
            return None
        suggestions = resp.json() or []
    except (httpx.HTTPError, ValueError):
        logger.warning("Domain lookup failed for '%s'", name, exc_info=True)
        return None

    for s in suggestions:
        if isinstance(s, dict) and s.get("domain"):
            return normalise_domain(s["domain"])
    return None
