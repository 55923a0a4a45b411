# backend/salesintel/services/connectors/brightdata.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class BrightDataConnector(BaseConnector):
    """
    Bright Data marketplace dataset filter (company firmographics).

    Submit a filter, poll until it completes, then download the result. A
    filter that never completes within the polling window is reported as
    "nothing to report", not retried.
    """

    name = "brightdata"

    def __init__(
        self,
        max_polling_attempts: int = 30,
        polling_interval_seconds: float = 2.0,
    ) -> None:
        super().__init__()
        self.api_key: Optional[str] = settings.BRIGHTDATA_API_KEY
        self.dataset_id = settings.BRIGHTDATA_COMPANY_DATASET_ID
        self.base_url = "https://api.brightdata.com/datasets"
        self.max_polling_attempts = max_polling_attempts
        self.polling_interval_seconds = polling_interval_seconds

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _poll(self, filter_id: str) -> Optional[Any]:
        for attempt in range(self.max_polling_attempts):
            status = await self._request_json(
                "GET",
                f"{self.base_url}/filter/{filter_id}",
                headers=self._headers(),
            )
            if not isinstance(status, dict):
                return None

            state = status.get("status")
            if state == "completed":
                url = status.get("result_url")
                if not url:
                    return None
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(url, headers=self._headers())
                resp.raise_for_status()
                return resp.json()
            if state == "failed":
                raise RuntimeError(f"Bright Data filter failed: {status.get('error') or 'unknown error'}")

            await asyncio.sleep(self.polling_interval_seconds)

        logger.warning(
            "Bright Data filter %s did not complete after %d polls",
            filter_id,
            self.max_polling_attempts,
            extra={"source": self.name},
        )
        return None

    async def fetch(self, company_name: str) -> Optional[ConnectorResult]:
        if not self.is_configured() or not (company_name or "").strip():
            return None

        submitted = await self._request_json(
            "POST",
            f"{self.base_url}/filter",
            headers=self._headers(),
            json={
                "dataset_id": self.dataset_id,
                "query": {"name": company_name},
                "output_format": "json",
                "delivery_method": "download",
            },
        )
        if not isinstance(submitted, dict) or not submitted.get("id"):
            return None

        rows = await self._poll(submitted["id"])
        if not rows:
            return None
        records = rows if isinstance(rows, list) else [rows]
        return ConnectorResult({"dataset_id": self.dataset_id, "records": records[:10]})
