# backend/salesintel/services/vendor_context.py
from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .orchestration_core import CacheType, cache_key, is_expired
from .types import MultiSourceData, VendorContext, utc_now_iso

logger = logging.getLogger(__name__)

VENDOR_CONTEXT_TTL_HOURS = 168
MAX_ITEMS = 5

# Customer segments we look for in search snippets
MARKET_SEGMENTS = [
    "enterprise",
    "mid-market",
    "small business",
    "smb",
    "startups",
    "healthcare",
    "financial services",
    "banking",
    "insurance",
    "retail",
    "e-commerce",
    "manufacturing",
    "education",
    "government",
    "public sector",
    "logistics",
    "telecommunications",
]

PRICING_HINTS = [
    ("freemium", "freemium"),
    ("free plan", "freemium"),
    ("free trial", "subscription with free trial"),
    ("per user", "per-seat subscription"),
    ("per seat", "per-seat subscription"),
    ("usage-based", "usage-based"),
    ("pay as you go", "usage-based"),
    ("subscription", "subscription"),
    ("contact sales", "enterprise (quote-based)"),
]

_OFFERS = re.compile(
    r"\b(?:offers|provides|develops|builds|sells|makes)\s+([^.;:]{3,120})",
    re.IGNORECASE,
)
_COMPETITORS = re.compile(
    r"\b(?:competitors?(?:\s+include)?|alternatives?\s+to|compared?\s+(?:to|with)|vs\.?)\s+([^.;:]{3,120})",
    re.IGNORECASE,
)
_LIST_SPLIT = re.compile(r",\s*|\s+and\s+|\s+or\s+")


def _dedupe(items: Iterable[str], limit: int = MAX_ITEMS) -> List[str]:
    seen: Dict[str, str] = {}
    for raw in items:
        item = (raw or "").strip(" .\"'").strip()
        if not item or len(item) > 80:
            continue
        key = item.lower()
        if key not in seen:
            seen[key] = item
        if len(seen) >= limit:
            break
    return list(seen.values())


def _payloads(data: MultiSourceData) -> List[Dict[str, Any]]:
    return [p for p in data.sources.values() if isinstance(p, dict)]


def _knowledge_graphs(data: MultiSourceData) -> List[Dict[str, Any]]:
    return [p["knowledge_graph"] for p in _payloads(data) if isinstance(p.get("knowledge_graph"), dict)]


def _snippets(data: MultiSourceData) -> List[str]:
    out: List[str] = []
    for p in _payloads(data):
        for r in p.get("results") or []:
            if isinstance(r, dict):
                out.extend(x for x in (r.get("title"), r.get("snippet")) if x)
    return out


def _organization(data: MultiSourceData) -> Dict[str, Any]:
    for p in _payloads(data):
        if isinstance(p.get("organization"), dict):
            return p["organization"]
        records = p.get("records")
        if isinstance(records, list) and records and isinstance(records[0], dict):
            return records[0]
    return {}


def extract_industry(data: MultiSourceData) -> Optional[str]:
    for kg in _knowledge_graphs(data):
        industry = kg.get("industry") or kg.get("type")
        if isinstance(industry, list):
            industry = industry[0] if industry else None
        if industry:
            return str(industry)
    org = _organization(data)
    industry = org.get("industry") or org.get("industries")
    if isinstance(industry, list):
        industry = industry[0] if industry else None
    return str(industry) if industry else None


def extract_products(data: MultiSourceData) -> List[str]:
    products: List[str] = []
    for kg in _knowledge_graphs(data):
        raw = kg.get("products")
        if isinstance(raw, list):
            products.extend(p.get("name") if isinstance(p, dict) else str(p) for p in raw)
    for snippet in _snippets(data):
        for match in _OFFERS.finditer(snippet):
            products.extend(_LIST_SPLIT.split(match.group(1)))
    return _dedupe(p for p in products if p)


def extract_competitors(data: MultiSourceData, vendor_name: str) -> List[str]:
    competitors: List[str] = []
    for kg in _knowledge_graphs(data):
        for item in kg.get("people_also_search_for") or []:
            if isinstance(item, dict) and item.get("name"):
                competitors.append(item["name"])
    for snippet in _snippets(data):
        for match in _COMPETITORS.finditer(snippet):
            competitors.extend(_LIST_SPLIT.split(match.group(1)))
    vendor = vendor_name.strip().lower()
    return _dedupe(c for c in competitors if c and c.strip().lower() != vendor)


def extract_target_markets(data: MultiSourceData) -> List[str]:
    text = " ".join(_snippets(data)).lower()
    return [s for s in MARKET_SEGMENTS if re.search(rf"\b{re.escape(s)}\b", text)][:MAX_ITEMS]


def extract_value_propositions(data: MultiSourceData) -> List[str]:
    props: List[str] = []
    for kg in _knowledge_graphs(data):
        if kg.get("description"):
            props.append(str(kg["description"]).split(". ")[0])
    for p in _payloads(data):
        if p.get("kind") == "organic":
            props.extend(
                r.get("snippet", "").split(". ")[0]
                for r in (p.get("results") or [])[:3]
                if isinstance(r, dict)
            )
    return _dedupe(props, limit=3)


def extract_positioning(data: MultiSourceData) -> Optional[str]:
    for kg in _knowledge_graphs(data):
        if kg.get("description"):
            return str(kg["description"])
    return None


def extract_pricing_model(data: MultiSourceData) -> Optional[str]:
    text = " ".join(_snippets(data)).lower()
    for needle, label in PRICING_HINTS:
        if needle in text:
            return label
    return None


def build_vendor_context(vendor_company: str, data: MultiSourceData) -> VendorContext:
    return VendorContext(
        company_name=vendor_company,
        industry=extract_industry(data),
        products=extract_products(data),
        target_markets=extract_target_markets(data),
        competitors=extract_competitors(data, vendor_company),
        value_propositions=extract_value_propositions(data),
        positioning_strategy=extract_positioning(data),
        pricing_model=extract_pricing_model(data),
        last_updated=utc_now_iso(),
    )


class VendorContextResolver:
    """
    Resolves the structured profile of the user's own company.

    Cached through the wrapped get/set under cache_key("vendor_context", vendor)
    for a week. `resolve` never raises: on any failure it returns the minimal
    {company_name, last_updated} context.
    """

    def __init__(
        self,
        cache: Any,
        collect: Callable[[str], Awaitable[MultiSourceData]],
        ttl_hours: float = VENDOR_CONTEXT_TTL_HOURS,
    ) -> None:
        self.cache = cache
        self.collect = collect
        self.ttl_hours = ttl_hours

    async def _cached(self, key: str) -> Optional[VendorContext]:
        if self.cache is None:
            return None
        try:
            cached = await self.cache.get(key)
        except Exception:
            logger.exception("Vendor context cache read failed for %s", key)
            return None
        context = VendorContext.from_dict(cached) if cached else None
        if context is None:
            return None
        if is_expired({"timestamp": context.last_updated}, self.ttl_hours):
            return None
        return context

    async def resolve(self, vendor_company: str) -> VendorContext:
        key = cache_key("vendor_context", vendor_company)
        try:
            cached = await self._cached(key)
            if cached is not None:
                logger.info(
                    "Vendor context cache hit for '%s'",
                    vendor_company,
                    extra={"company_name": vendor_company},
                )
                return cached

            data = await self.collect(vendor_company)
            context = build_vendor_context(vendor_company, data)
            if self.cache is not None:
                try:
                    await self.cache.set(key, context.to_dict(), CacheType.VENDOR_CONTEXT)
                except Exception:
                    logger.exception("Vendor context cache write failed for %s", key)
            return context
        except Exception as e:
            logger.warning(
                "Failed to resolve vendor context for '%s': %s",
                vendor_company,
                e,
                extra={"company_name": vendor_company},
            )
            return VendorContext.minimal(vendor_company)
