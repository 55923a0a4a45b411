# backend/salesintel/services/connectors/apollo.py

# Registered twice: "apollo" (organization + leadership) and "apollo_contacts"
# (leadership only). Both bill against the same Apollo key.

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import BaseConnector, ConnectorResult, normalise_domain
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

LEADERSHIP_TITLES = [
    "founder",
    "co-founder",
    "ceo",
    "chief executive officer",
    "cto",
    "chief technology officer",
    "cfo",
    "coo",
    "president",
    "vp",
    "vice president",
    "head",
    "director",
]


class ApolloConnector(BaseConnector):
    """
    Apollo.io connector used for decision makers and firmographics.

    Responsibilities:
    - Given a company name, resolve the best-matching Apollo organization
      (Organization Search) and extract firmographics.
    - Use People API Search to find leadership linked to the organization.
    - Return a NORMALISED internal payload, not raw Apollo JSON:
        {
          "people": [
            {
              "full_name": "Jane Doe",
              "title": "CEO",
              "company": "Acme",
              "company_domain": "acme.com",
              "linkedin_url": "https://linkedin.com/in/jane-doe",
              "source": "apollo",
              "apollo_person_id": "..."
            },
            ...
          ],
          "organization": {
            "apollo_organization_id": "...",
            "name": "Acme",
            "primary_domain": "acme.com",
            "industry": "...",
            "estimated_num_employees": 250,
            "founded_year": 2011,
            "annual_revenue": "..."
          }
        }
    - No org and no people is a legitimate outcome (None).
    """

    def __init__(self, name: str = "apollo", include_organization: bool = True) -> None:
        super().__init__()
        self.name = name
        self.include_organization = include_organization
        self.api_key: Optional[str] = settings.APOLLO_API_KEY
        self.base_url = "https://api.apollo.io/api/v1"
        self.people_per_page = 25

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "X-Api-Key": self.api_key or "",
            "Content-Type": "application/json",
            "accept": "application/json",
        }

    async def _search_organization_by_name(self, company_name: str) -> Optional[Dict[str, Any]]:
        data = await self._request_json(
            "POST",
            f"{self.base_url}/mixed_companies/search",
            headers=self._auth_headers(),
            json={"page": 1, "per_page": 1, "q_organization_name": company_name},
        )
        if not isinstance(data, dict):
            return None
        orgs = data.get("organizations") or data.get("companies") or []
        if not orgs:
            return None

        org = orgs[0]
        # The exact key names can vary; be defensive.
        return {
            "apollo_organization_id": org.get("id") or org.get("organization_id"),
            "name": org.get("name"),
            "primary_domain": normalise_domain(
                org.get("primary_domain") or org.get("domain") or org.get("website_url")
            ),
            "industry": org.get("industry"),
            "estimated_num_employees": (
                org.get("estimated_num_employees")
                or org.get("estimated_num_employees_range")
                or org.get("employee_count")
            ),
            "founded_year": org.get("founded_year") or org.get("year_founded"),
            "annual_revenue": org.get("annual_revenue") or org.get("annual_revenue_range"),
        }

    async def _search_people(
        self,
        domain: Optional[str],
        apollo_organization_id: Optional[str],
    ) -> List[Dict[str, Any]]:
        if not domain and not apollo_organization_id:
            return []

        payload: Dict[str, Any] = {
            "page": 1,
            "per_page": self.people_per_page,
            "person_titles": LEADERSHIP_TITLES,
            "person_seniorities": ["owner", "founder", "c_suite", "vp", "head", "director"],
        }
        if apollo_organization_id:
            payload["organization_ids"] = [apollo_organization_id]
        else:
            payload["q_organization_domains_list"] = [domain]

        data = await self._request_json(
            "POST",
            f"{self.base_url}/mixed_people/api_search",
            headers=self._auth_headers(),
            json=payload,
        )
        if not isinstance(data, dict):
            return []

        people: List[Dict[str, Any]] = []
        for p in data.get("people") or []:
            if not isinstance(p, dict):
                continue
            org = p.get("organization") or {}
            full_name = (
                p.get("name")
                or " ".join(x for x in [p.get("first_name"), p.get("last_name")] if x)
                or "Unknown"
            )
            people.append(
                {
                    "apollo_person_id": p.get("id"),
                    "full_name": full_name,
                    "title": p.get("title") or p.get("headline"),
                    "company": org.get("name") or p.get("organization_name"),
                    "company_domain": org.get("primary_domain") or domain,
                    "linkedin_url": p.get("linkedin_url"),
                    "source": "apollo",
                }
            )
        return people

    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        if not self.is_configured() or not (company_name or "").strip():
            return None

        org = await self._search_organization_by_name(company_name.strip())
        if not org:
            logger.info(
                "Apollo: no organization match for '%s'",
                company_name,
                extra={"source": self.name, "company_name": company_name},
            )
            return None

        people = await self._search_people(org.get("primary_domain"), org.get("apollo_organization_id"))
        if not people and not self.include_organization:
            return None

        result: Dict[str, Any] = {"people": people}
        if self.include_organization:
            result["organization"] = org
        return ConnectorResult(result)
