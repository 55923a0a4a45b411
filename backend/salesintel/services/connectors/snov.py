# backend/salesintel/services/connectors/snov.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import BaseConnector, ConnectorResult, lookup_company_domain
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class SnovConnector(BaseConnector):
    """
    Snov.io domain search used for decision-maker contacts.

    OAuth client-credentials token, then domain emails with person info.
    Payload:
        {"domain": "...", "contacts": [{"full_name", "title", "email", "linkedin_url", "source"}], "total": n}
    """

    name = "snov_contacts"

    def __init__(self) -> None:
        super().__init__()
        self.client_id: Optional[str] = settings.SNOV_CLIENT_ID
        self.client_secret: Optional[str] = settings.SNOV_CLIENT_SECRET
        self.base_url = "https://api.snov.io"
        self.max_contacts = 50

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _access_token(self) -> Optional[str]:
        data = await self._request_json(
            "POST",
            f"{self.base_url}/v1/oauth/access_token",
            json={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        if not isinstance(data, dict):
            return None
        return data.get("access_token")

    @staticmethod
    def _normalise_contacts(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
        contacts: List[Dict[str, Any]] = []
        for e in raw.get("emails") or []:
            if not isinstance(e, dict):
                continue
            full_name = (
                e.get("name")
                or " ".join(x for x in [e.get("firstName"), e.get("lastName")] if x)
                or None
            )
            contacts.append(
                {
                    "full_name": full_name,
                    "title": e.get("position"),
                    "email": e.get("email"),
                    "linkedin_url": e.get("sourcePage"),
                    "source": "snov",
                }
            )
        return contacts

    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        if not self.is_configured():
            return None

        domain = await lookup_company_domain(company_name, timeout=self.timeout)
        if not domain:
            logger.info(
                "Snov: could not resolve a domain for '%s'",
                company_name,
                extra={"source": self.name, "company_name": company_name},
            )
            return None

        token = await self._access_token()
        if not token:
            return None

        raw = await self._request_json(
            "GET",
            f"{self.base_url}/v2/domain-emails-with-info",
            params={"domain": domain, "type": "personal", "limit": self.max_contacts, "lastId": 0},
            headers={"Authorization": f"Bearer {token}"},
        )
        if not isinstance(raw, dict):
            return None

        contacts = self._normalise_contacts(raw)
        if not contacts:
            return None
        return ConnectorResult({"domain": domain, "contacts": contacts, "total": len(contacts)})
