# backend/salesintel/services/connectors/serpapi.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import BaseConnector, ConnectorResult, normalise_domain
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# kind -> (engine, extra params, query template, results key)
SEARCH_PROFILES: Dict[str, Dict[str, Any]] = {
    "organic": {
        "engine": "google",
        "params": {"num": 10},
        "query": '"{company}"',
        "results_key": "organic_results",
    },
    "news": {
        "engine": "google",
        "params": {"tbm": "nws", "num": 10},
        "query": '"{company}"',
        "results_key": "news_results",
    },
    "jobs": {
        "engine": "google_jobs",
        "params": {},
        "query": "{company} jobs",
        "results_key": "jobs_results",
    },
    "linkedin": {
        "engine": "google",
        "params": {"num": 10},
        "query": 'site:linkedin.com/in "{company}"',
        "results_key": "organic_results",
    },
    "youtube": {
        "engine": "youtube",
        "params": {},
        "query": "{company}",
        "results_key": "video_results",
        "query_param": "search_query",
    },
}


class SerpAPIConnector(BaseConnector):
    """
    SerpAPI search, one instance per search kind (organic, news, jobs,
    linkedin, youtube).

    Normalises every result list into:
        {
          "query": "...",
          "kind": "news",
          "results": [
            {"title", "url", "snippet", "domain", "published_date", "provider"}
          ],
          "knowledge_graph": {...} | None
        }
    An empty results list is reported as None.
    """

    def __init__(self, kind: str) -> None:
        super().__init__()
        if kind not in SEARCH_PROFILES:
            raise ValueError(f"Unknown SerpAPI search kind '{kind}'")
        self.kind = kind
        self.name = f"serp_{kind}"
        self.api_key: Optional[str] = settings.SERPAPI_API_KEY
        self.base_url = settings.SERPAPI_BASE_URL

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _params(self, company_name: str) -> Dict[str, Any]:
        profile = SEARCH_PROFILES[self.kind]
        params: Dict[str, Any] = {
            "engine": profile["engine"],
            "api_key": self.api_key,
            profile.get("query_param", "q"): profile["query"].format(company=company_name),
        }
        params.update(profile["params"])
        return params

    def _normalise(self, raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        items = raw.get(SEARCH_PROFILES[self.kind]["results_key"]) or []
        out: List[Dict[str, Any]] = []
        for r in items:
            if not isinstance(r, dict):
                continue
            url = r.get("link") or r.get("share_link") or r.get("apply_link")
            if not url:
                options = r.get("apply_options") or []
                if options and isinstance(options[0], dict):
                    url = options[0].get("link")
            out.append(
                {
                    "title": r.get("title"),
                    "url": url,
                    "snippet": r.get("snippet") or r.get("description"),
                    "domain": normalise_domain(url),
                    "published_date": r.get("date") or r.get("published_date"),
                    "provider": "serpapi",
                    # jobs-only, harmless elsewhere
                    "company_name": r.get("company_name"),
                    "location": r.get("location"),
                }
            )
        return out

    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        if not self.is_configured() or not (company_name or "").strip():
            return None

        params = self._params(company_name)
        raw = await self._request_json("GET", self.base_url, params=params)
        if not isinstance(raw, dict):
            return None
        if raw.get("error"):
            # SerpAPI reports "no results" as an error string with HTTP 200
            logger.info(
                "SerpAPI %s returned no results for '%s': %s",
                self.kind,
                company_name,
                raw.get("error"),
                extra={"source": self.name, "company_name": company_name},
            )
            return None

        results = self._normalise(raw)
        if not results:
            return None
        return ConnectorResult(
            {
                "query": params.get("q") or params.get("search_query"),
                "kind": self.kind,
                "results": results,
                "knowledge_graph": raw.get("knowledge_graph"),
            }
        )
