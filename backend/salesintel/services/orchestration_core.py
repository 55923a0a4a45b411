# backend/salesintel/services/orchestration_core.py
"""
Stateless helpers shared by the planner, the engine and the facade.

- cache key generation and TTL checks
- per-source cost / duration / reliability / cache-type lookups
- budget validation
- retry (tenacity) and batched fan-out combinators
- orchestration health check
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    stop_after_attempt,
    wait_incrementing,
)

from .catalog import datasets_for, sources_for_datasets
from .types import ConsumerType, OrchestrationHealth, SourceAvailability, SourceType

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Sleep = Callable[[float], Awaitable[None]]

MS_PER_HOUR = 3_600_000

# Fallbacks for sources missing from the tables below
FALLBACK_COST = 1.0
FALLBACK_DURATION_MS = 3000
FALLBACK_RELIABILITY = 70

SLOW_SOURCE_MS = 5000


class CostLimitExceeded(Exception):
    """Raised before any paid call when a plan's estimated cost is over budget."""

    def __init__(self, estimated_cost: float, max_cost: float):
        self.estimated_cost = estimated_cost
        self.max_cost = max_cost
        super().__init__(
            f"Estimated cost ${estimated_cost:.2f} exceeds limit ${max_cost:.2f}"
        )


class CacheType(str, Enum):
    SERP_ORGANIC_RAW = "serp_organic_raw"
    SERP_NEWS_RAW = "serp_news_raw"
    SERP_JOBS_RAW = "serp_jobs_raw"
    SERP_LINKEDIN_RAW = "serp_linkedin_raw"
    SERP_YOUTUBE_RAW = "serp_youtube_raw"
    SERP_API_RAW_RESPONSE = "serp_api_raw_response"
    BRIGHTDATA_COMPANY_ENRICHMENT = "brightdata_company_enrichment"
    SNOV_CONTACTS_RAW = "snov_contacts_raw"
    APOLLO_CONTACT_ENRICHMENT = "apollo_contact_enrichment"
    ZOOMINFO_CONTACT_ENRICHMENT = "zoominfo_contact_enrichment"
    CLEARBIT_COMPANY_ENRICHMENT = "clearbit_company_enrichment"
    HUNTER_EMAIL_ENRICHMENT = "hunter_email_enrichment"
    COMPANY_DATABASE_ENRICHMENT = "company_database_enrichment"
    VENDOR_CONTEXT = "vendor_context_enrichment"
    UNKNOWN = "unknown"


# Store-side TTL per cache type. Consumers may still reject younger entries
# through their own max age.
CACHE_TYPE_TTL_HOURS: Dict[CacheType, int] = {
    CacheType.SERP_ORGANIC_RAW: 24,
    CacheType.SERP_NEWS_RAW: 12,
    CacheType.SERP_JOBS_RAW: 24,
    CacheType.SERP_LINKEDIN_RAW: 48,
    CacheType.SERP_YOUTUBE_RAW: 72,
    CacheType.SERP_API_RAW_RESPONSE: 24,
    CacheType.BRIGHTDATA_COMPANY_ENRICHMENT: 336,
    CacheType.SNOV_CONTACTS_RAW: 168,
    CacheType.APOLLO_CONTACT_ENRICHMENT: 168,
    CacheType.ZOOMINFO_CONTACT_ENRICHMENT: 168,
    CacheType.CLEARBIT_COMPANY_ENRICHMENT: 336,
    CacheType.HUNTER_EMAIL_ENRICHMENT: 168,
    CacheType.COMPANY_DATABASE_ENRICHMENT: 336,
    CacheType.VENDOR_CONTEXT: 168,
    CacheType.UNKNOWN: 24,
}

# USD per call
DEFAULT_SOURCE_COSTS: Dict[SourceType, float] = {
    SourceType.serp_organic: 0.05,
    SourceType.serp_news: 0.05,
    SourceType.serp_jobs: 0.05,
    SourceType.serp_linkedin: 0.08,
    SourceType.serp_youtube: 0.05,
    SourceType.serp_api: 0.05,
    SourceType.brightdata: 0.15,
    SourceType.snov_contacts: 0.12,
    SourceType.apollo_contacts: 0.10,
    SourceType.apollo: 0.10,
    SourceType.zoominfo: 0.20,
    SourceType.clearbit: 0.18,
    SourceType.hunter: 0.08,
    SourceType.company_db: 0.05,
}

# Typical wall-clock per call, ms
DEFAULT_SOURCE_DURATIONS: Dict[SourceType, int] = {
    SourceType.serp_organic: 2000,
    SourceType.serp_news: 2000,
    SourceType.serp_jobs: 2000,
    SourceType.serp_linkedin: 2500,
    SourceType.serp_youtube: 2000,
    SourceType.serp_api: 2000,
    SourceType.brightdata: 3000,
    SourceType.snov_contacts: 3000,
    SourceType.apollo_contacts: 3000,
    SourceType.apollo: 3000,
    SourceType.zoominfo: 4000,
    SourceType.clearbit: 3000,
    SourceType.hunter: 2500,
    SourceType.company_db: 1500,
}

# 0-100
DEFAULT_SOURCE_RELIABILITY: Dict[SourceType, int] = {
    SourceType.serp_organic: 85,
    SourceType.serp_news: 75,
    SourceType.serp_jobs: 70,
    SourceType.serp_linkedin: 90,
    SourceType.serp_youtube: 60,
    SourceType.serp_api: 85,
    SourceType.brightdata: 88,
    SourceType.snov_contacts: 80,
    SourceType.apollo_contacts: 85,
    SourceType.apollo: 85,
    SourceType.zoominfo: 88,
    SourceType.clearbit: 85,
    SourceType.hunter: 78,
    SourceType.company_db: 75,
}

DEFAULT_SOURCE_CACHE_TYPES: Dict[SourceType, CacheType] = {
    SourceType.serp_organic: CacheType.SERP_ORGANIC_RAW,
    SourceType.serp_news: CacheType.SERP_NEWS_RAW,
    SourceType.serp_jobs: CacheType.SERP_JOBS_RAW,
    SourceType.serp_linkedin: CacheType.SERP_LINKEDIN_RAW,
    SourceType.serp_youtube: CacheType.SERP_YOUTUBE_RAW,
    SourceType.serp_api: CacheType.SERP_API_RAW_RESPONSE,
    SourceType.brightdata: CacheType.BRIGHTDATA_COMPANY_ENRICHMENT,
    SourceType.snov_contacts: CacheType.SNOV_CONTACTS_RAW,
    SourceType.apollo_contacts: CacheType.APOLLO_CONTACT_ENRICHMENT,
    SourceType.apollo: CacheType.APOLLO_CONTACT_ENRICHMENT,
    SourceType.zoominfo: CacheType.ZOOMINFO_CONTACT_ENRICHMENT,
    SourceType.clearbit: CacheType.CLEARBIT_COMPANY_ENRICHMENT,
    SourceType.hunter: CacheType.HUNTER_EMAIL_ENRICHMENT,
    SourceType.company_db: CacheType.COMPANY_DATABASE_ENRICHMENT,
}

# Search-engine sources; used for "no search data" recommendations
SEARCH_SOURCES = (
    SourceType.serp_organic,
    SourceType.serp_news,
    SourceType.serp_jobs,
    SourceType.serp_linkedin,
    SourceType.serp_youtube,
    SourceType.serp_api,
)


# ---------------------------------------------------------------------------
# Keys and lookups
# ---------------------------------------------------------------------------

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_company_name(company_name: str) -> str:
    return _NON_ALNUM.sub("", (company_name or "").lower())


def cache_key(source: Any, company_name: str) -> str:
    """
    "{source}_{normalized}", where normalized is the lowercased company name
    with everything outside [a-z0-9] removed.
    """
    src = source.value if isinstance(source, Enum) else str(source)
    return f"{src}_{normalize_company_name(company_name)}"


def cost_of(source: Any, costs: Optional[Mapping[SourceType, float]] = None) -> float:
    src = SourceType.parse(source)
    table = costs if costs is not None else DEFAULT_SOURCE_COSTS
    if src is None or src not in table:
        return FALLBACK_COST
    return table[src]


def duration_of(source: Any) -> int:
    src = SourceType.parse(source)
    return DEFAULT_SOURCE_DURATIONS.get(src, FALLBACK_DURATION_MS) if src else FALLBACK_DURATION_MS


def reliability_of(source: Any) -> int:
    src = SourceType.parse(source)
    return DEFAULT_SOURCE_RELIABILITY.get(src, FALLBACK_RELIABILITY) if src else FALLBACK_RELIABILITY


def cache_type_of(source: Any) -> CacheType:
    src = SourceType.parse(source)
    return DEFAULT_SOURCE_CACHE_TYPES.get(src, CacheType.UNKNOWN) if src else CacheType.UNKNOWN


def ttl_hours_of(source: Any) -> int:
    return CACHE_TYPE_TTL_HOURS[cache_type_of(source)]


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if not raw or not isinstance(raw, str):
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def entry_age_ms(entry: Optional[Mapping[str, Any]], now: Optional[datetime] = None) -> Optional[float]:
    if not entry or not isinstance(entry, Mapping):
        return None
    ts = parse_timestamp(entry.get("timestamp"))
    if ts is None:
        return None
    now = now or datetime.now(timezone.utc)
    return (now - ts).total_seconds() * 1000


def is_expired(
    entry: Optional[Mapping[str, Any]],
    max_age_hours: float,
    now: Optional[datetime] = None,
) -> bool:
    """Missing / unparseable timestamps count as expired; so does age == max age."""
    age = entry_age_ms(entry, now=now)
    if age is None:
        return True
    return age >= max_age_hours * MS_PER_HOUR


# Float noise allowance for budget comparisons; far below any real price
COST_EPSILON = 1e-9


def within_budget(total: float, max_cost: float) -> bool:
    return total <= max_cost + COST_EPSILON


def validate_cost_limits(estimated_cost: float, max_cost: float) -> None:
    if not within_budget(estimated_cost, max_cost):
        raise CostLimitExceeded(estimated_cost, max_cost)


def round_cost(value: float) -> float:
    return round(value, 2)


def data_quality_score(sources: Mapping[Any, Any], primary_source: Any) -> int:
    """Reliability of the primary source, +5 when more than one source has data, capped at 100."""
    score = reliability_of(primary_source)
    contributing = sum(1 for v in sources.values() if v is not None)
    if contributing > 1:
        score += 5
    return min(100, score)


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


async def with_retry(
    op: Callable[[], Awaitable[T]],
    max_retries: int,
    base_delay: float,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run `op` up to max_retries + 1 times. After failed attempt n we wait
    base_delay * n seconds. The last error is re-raised.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(0, max_retries) + 1),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        sleep=sleep,
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    return await retrying(op)


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    pause_seconds: float,
    sleep: Sleep = asyncio.sleep,
) -> List[Tuple[T, Any]]:
    """
    Fan `items` out in order-preserving chunks of `batch_size`.

    Each chunk runs concurrently; a failure is returned in place of its result
    and never cancels siblings. We pause between chunks, not after the last.
    """
    size = max(1, int(batch_size))
    out: List[Tuple[T, Any]] = []
    for start in range(0, len(items), size):
        if start > 0 and pause_seconds > 0:
            await sleep(pause_seconds)
        chunk = items[start : start + size]
        results = await asyncio.gather(*(worker(i) for i in chunk), return_exceptions=True)
        out.extend(zip(chunk, results))
    return out


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheConfig:
    ttl_hours: float
    quality_threshold: float


DEFAULT_COST_BUDGETS: Dict[ConsumerType, float] = {
    ConsumerType.profile: 2.0,
    ConsumerType.vendor_context: 5.0,
    ConsumerType.customer_intelligence: 7.0,
    ConsumerType.test: 1.0,
    ConsumerType.research: 3.0,
}

DEFAULT_CACHE_CONFIGS: Dict[ConsumerType, CacheConfig] = {
    ConsumerType.profile: CacheConfig(ttl_hours=168, quality_threshold=0.70),
    ConsumerType.vendor_context: CacheConfig(ttl_hours=72, quality_threshold=0.80),
    ConsumerType.customer_intelligence: CacheConfig(ttl_hours=24, quality_threshold=0.85),
    ConsumerType.test: CacheConfig(ttl_hours=1, quality_threshold=0.60),
    ConsumerType.research: CacheConfig(ttl_hours=48, quality_threshold=0.75),
}


def _default_sources() -> Dict[ConsumerType, Tuple[SourceType, ...]]:
    return {
        ConsumerType.profile: (
            SourceType.serp_organic,
            SourceType.serp_news,
            SourceType.brightdata,
        ),
        ConsumerType.vendor_context: (
            SourceType.serp_organic,
            SourceType.serp_news,
            SourceType.apollo,
        ),
        ConsumerType.customer_intelligence: (
            SourceType.serp_organic,
            SourceType.serp_news,
            SourceType.serp_jobs,
            SourceType.serp_linkedin,
            SourceType.snov_contacts,
            SourceType.apollo_contacts,
            SourceType.brightdata,
        ),
        ConsumerType.test: (SourceType.serp_organic,),
        ConsumerType.research: tuple(
            sources_for_datasets(datasets_for(ConsumerType.research))
        ),
    }


def load_source_costs(override_raw: Optional[str]) -> Dict[SourceType, float]:
    """Built-in cost table, with entries replaced from a JSON {source: usd} object."""
    costs = dict(DEFAULT_SOURCE_COSTS)
    if not override_raw:
        return costs

    try:
        override = json.loads(override_raw)
    except json.JSONDecodeError:
        logger.warning("SOURCE_COSTS_JSON is not valid JSON; using built-in costs")
        return costs

    if not isinstance(override, dict):
        return costs

    for key, value in override.items():
        src = SourceType.parse(key)
        if src is None:
            logger.warning("Ignoring cost override for unknown source '%s'", key)
            continue
        try:
            cost = float(value)
        except (ValueError, TypeError):
            continue
        if cost < 0:
            continue
        costs[src] = cost
    return costs


@dataclass(frozen=True)
class OrchestrationConfig:
    """Tuning knobs handed to the orchestrator at construction."""

    max_parallel_sources: int = 5
    retry_attempts: int = 2
    retry_base_delay_seconds: float = 1.0
    batch_pause_seconds: float = 0.5
    cache_enabled: bool = True
    quality_threshold: int = 70
    raw_status_max_age_hours: float = 24.0
    vendor_context_ttl_hours: float = 168.0
    cost_budgets: Dict[ConsumerType, float] = field(
        default_factory=lambda: dict(DEFAULT_COST_BUDGETS)
    )
    cache_configs: Dict[ConsumerType, CacheConfig] = field(
        default_factory=lambda: dict(DEFAULT_CACHE_CONFIGS)
    )
    default_sources: Dict[ConsumerType, Tuple[SourceType, ...]] = field(
        default_factory=_default_sources
    )
    source_costs: Dict[SourceType, float] = field(
        default_factory=lambda: dict(DEFAULT_SOURCE_COSTS)
    )

    @classmethod
    def from_settings(cls, settings: Any = None) -> "OrchestrationConfig":
        if settings is None:
            from ..core.config import get_settings

            settings = get_settings()
        return cls(
            max_parallel_sources=settings.ORCHESTRATION_MAX_PARALLEL_SOURCES,
            retry_attempts=settings.ORCHESTRATION_RETRY_ATTEMPTS,
            retry_base_delay_seconds=settings.ORCHESTRATION_RETRY_BASE_DELAY_SECONDS,
            batch_pause_seconds=settings.ORCHESTRATION_BATCH_PAUSE_SECONDS,
            cache_enabled=settings.ORCHESTRATION_CACHE_ENABLED,
            source_costs=load_source_costs(settings.SOURCE_COSTS_JSON),
        )

    def budget_for(self, consumer: ConsumerType) -> float:
        return self.cost_budgets.get(consumer, DEFAULT_COST_BUDGETS[ConsumerType.test])

    def max_cache_age_for(self, consumer: ConsumerType) -> float:
        cfg = self.cache_configs.get(consumer)
        return cfg.ttl_hours if cfg else 24.0

    def quality_threshold_for(self, consumer: ConsumerType) -> int:
        """Consumer quality target on the 0-100 score scale; global default otherwise."""
        cfg = self.cache_configs.get(consumer)
        return int(round(cfg.quality_threshold * 100)) if cfg else self.quality_threshold


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


def health_recommendations(sources: Iterable[SourceAvailability]) -> List[str]:
    sources = list(sources)
    recommendations: List[str] = []

    unavailable = [s for s in sources if not s.available]
    if unavailable:
        recommendations.append(
            f"{len(unavailable)} sources are unavailable. Consider using fallback sources."
        )

    slow = [s for s in sources if s.response_time and s.response_time > SLOW_SOURCE_MS]
    if slow:
        recommendations.append(
            f"{len(slow)} sources have slow response times. Consider reducing parallelism."
        )
    return recommendations


def health_status(available: int, total: int) -> str:
    ratio = (available / total) if total else 0.0
    if ratio >= 0.8:
        return "healthy"
    if ratio >= 0.5:
        return "degraded"
    return "unhealthy"


async def check_orchestration_health(
    registry: Any,
    cache: Any,
    sources: Optional[Iterable[Any]] = None,
) -> OrchestrationHealth:
    """
    Coarse health check: a source is available when a collector is registered
    and configured for it. No paid calls are made.
    """
    targets = list(sources) if sources is not None else list(registry.sources())
    availability: List[SourceAvailability] = []

    for raw in targets:
        src = SourceType.parse(raw)
        started = time.monotonic()
        if src is None:
            availability.append(
                SourceAvailability(source=str(raw), available=False, error_message="unknown source")
            )
            continue

        try:
            available = registry.get(src) is not None and registry.is_configured(src)
            error = None if available else "collector not registered or not configured"
        except Exception as e:
            logger.exception("Health check failed for source '%s'", src.value, extra={"source": src.value})
            available, error = False, str(e)

        availability.append(
            SourceAvailability(
                source=src.value,
                available=available,
                response_time=int((time.monotonic() - started) * 1000),
                error_message=error,
            )
        )

    cache_ok = False
    if cache is not None:
        try:
            cache_ok = bool(await cache.ping())
        except Exception:
            logger.exception("Cache ping failed during health check")

    healthy_count = sum(1 for s in availability if s.available)
    status = health_status(healthy_count, len(availability))
    recommendations = health_recommendations(availability)
    if not cache_ok:
        recommendations.append("Cache store is unreachable. Every request will hit paid APIs.")

    return OrchestrationHealth(
        is_healthy=status == "healthy",
        status=status,
        components={
            "cache": cache_ok,
            "collectors": healthy_count > 0,
        },
        sources=availability,
        recommendations=recommendations,
    )
