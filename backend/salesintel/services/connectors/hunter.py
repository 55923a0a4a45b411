# backend/salesintel/services/connectors/hunter.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()


class HunterConnector(BaseConnector):
    """Hunter.io domain search by company name."""

    name = "hunter"

    def __init__(self) -> None:
        super().__init__()
        self.api_key: Optional[str] = settings.HUNTER_API_KEY
        self.base_url = "https://api.hunter.io/v2"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        if not self.is_configured() or not (company_name or "").strip():
            return None

        raw = await self._request_json(
            "GET",
            f"{self.base_url}/domain-search",
            params={"company": company_name, "api_key": self.api_key, "limit": 25},
        )
        data = (raw or {}).get("data") if isinstance(raw, dict) else None
        if not data:
            return None

        emails: List[Dict[str, Any]] = []
        for e in data.get("emails") or []:
            if not isinstance(e, dict):
                continue
            emails.append(
                {
                    "full_name": " ".join(
                        x for x in [e.get("first_name"), e.get("last_name")] if x
                    ) or None,
                    "title": e.get("position"),
                    "email": e.get("value"),
                    "confidence": e.get("confidence"),
                    "linkedin_url": e.get("linkedin"),
                    "source": "hunter",
                }
            )

        if not emails and not data.get("domain"):
            return None
        return ConnectorResult(
            {
                "domain": data.get("domain"),
                "organization": data.get("organization"),
                "pattern": data.get("pattern"),
                "emails": emails,
            }
        )
