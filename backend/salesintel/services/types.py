# backend/salesintel/services/types.py
"""
Shared types for the collection orchestration layer.

Plans are frozen once the planner emits them; results and aggregates are plain
dataclasses that the engine fills in one uniquely-keyed slot at a time.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class SourceType(str, Enum):
    """Third-party data providers/endpoints the orchestrator can bill against."""

    serp_organic = "serp_organic"
    serp_news = "serp_news"
    serp_jobs = "serp_jobs"
    serp_linkedin = "serp_linkedin"
    serp_youtube = "serp_youtube"
    serp_api = "serp_api"
    brightdata = "brightdata"
    snov_contacts = "snov_contacts"
    apollo_contacts = "apollo_contacts"
    apollo = "apollo"
    zoominfo = "zoominfo"
    clearbit = "clearbit"
    hunter = "hunter"
    company_db = "company_db"

    @classmethod
    def parse(cls, value: Any) -> Optional["SourceType"]:
        """Return the matching member, or None for ids we do not know about."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ConsumerType(str, Enum):
    """Internal requesters, each with its own budget and TTL defaults."""

    profile = "profile"
    vendor_context = "vendor_context"
    customer_intelligence = "customer_intelligence"
    test = "test"
    research = "research"

    @classmethod
    def parse(cls, value: Any) -> Optional["ConsumerType"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class DatasetType(str, Enum):
    # Vendor context (the user's own company)
    company_products = "company_products"
    value_propositions = "value_propositions"
    target_markets = "target_markets"
    competitive_landscape = "competitive_landscape"
    positioning_strategy = "positioning_strategy"
    content_themes = "content_themes"
    pricing_model = "pricing_model"
    sales_methodology = "sales_methodology"
    company_culture = "company_culture"
    market_presence = "market_presence"

    # Customer intelligence (prospects)
    company_overview = "company_overview"
    decision_makers = "decision_makers"
    tech_stack = "tech_stack"
    business_challenges = "business_challenges"
    recent_activities = "recent_activities"
    budget_indicators = "budget_indicators"
    buying_signals = "buying_signals"
    competitive_usage = "competitive_usage"
    digital_footprint = "digital_footprint"
    growth_signals = "growth_signals"
    compliance_requirements = "compliance_requirements"
    integration_needs = "integration_needs"

    # Context-aware additions keyed off vendor attributes
    industry_analysis = "industry_analysis"
    technology_stack = "technology_stack"
    product_reviews = "product_reviews"
    geographic_distribution = "geographic_distribution"

    # Shared / basic
    company_name = "company_name"
    company_domain = "company_domain"
    industry = "industry"
    employee_count = "employee_count"
    company_description = "company_description"

    @classmethod
    def parse(cls, value: Any) -> Optional["DatasetType"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class SourceOutcome(str, Enum):
    """What happened to one planned source during a collection."""

    cached = "cached"        # served from a fresh cache entry
    collected = "collected"  # API call returned a payload
    empty = "empty"          # API call succeeded but had nothing to report
    errored = "errored"      # retries exhausted
    skipped = "skipped"      # no collector registered for the source


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _zero_attribution() -> Dict[str, float]:
    return {c.value: 0.0 for c in ConsumerType}


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DataCollectionPlan:
    company_name: str
    requester: ConsumerType
    to_collect: Tuple[SourceType, ...]
    from_cache: Tuple[SourceType, ...] = ()
    estimated_cost: float = 0.0
    estimated_duration: int = 0  # ms; sources run in parallel so this is the slowest one
    cache_savings: float = 0.0
    costs_attribution: Dict[str, float] = field(default_factory=_zero_attribution)
    max_cost: float = 0.0
    max_cache_age_hours: float = 24.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company_name": self.company_name,
            "requester": self.requester.value,
            "to_collect": [s.value for s in self.to_collect],
            "from_cache": [s.value for s in self.from_cache],
            "estimated_cost": self.estimated_cost,
            "estimated_duration": self.estimated_duration,
            "cache_savings": self.cache_savings,
            "costs_attribution": dict(self.costs_attribution),
            "max_cost": self.max_cost,
            "max_cache_age_hours": self.max_cache_age_hours,
        }


@dataclass
class VendorContext:
    """Structured profile of the user's own company."""

    company_name: str
    industry: Optional[str] = None
    products: List[str] = field(default_factory=list)
    target_markets: List[str] = field(default_factory=list)
    competitors: List[str] = field(default_factory=list)
    value_propositions: List[str] = field(default_factory=list)
    positioning_strategy: Optional[str] = None
    pricing_model: Optional[str] = None
    last_updated: str = field(default_factory=utc_now_iso)

    @classmethod
    def minimal(cls, company_name: str) -> "VendorContext":
        return cls(company_name=company_name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["VendorContext"]:
        if not isinstance(data, dict):
            return None
        if not data.get("company_name") or not data.get("last_updated"):
            return None
        return cls(
            company_name=data["company_name"],
            industry=data.get("industry"),
            products=list(data.get("products") or []),
            target_markets=list(data.get("target_markets") or []),
            competitors=list(data.get("competitors") or []),
            value_propositions=list(data.get("value_propositions") or []),
            positioning_strategy=data.get("positioning_strategy"),
            pricing_model=data.get("pricing_model"),
            last_updated=data["last_updated"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ContextAwareCollectionPlan:
    """Wraps a base plan with vendor-derived dataset priorities. Never mutates `plan`."""

    plan: DataCollectionPlan
    vendor_context: VendorContext
    customer_specific_datasets: Tuple[DatasetType, ...] = ()
    contextual_priorities: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = self.plan.to_dict()
        out["vendor_context"] = self.vendor_context.to_dict()
        out["customer_specific_datasets"] = [d.value for d in self.customer_specific_datasets]
        out["contextual_priorities"] = dict(self.contextual_priorities)
        return out


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CollectionTask:
    source: SourceType
    company_name: str
    priority: int
    estimated_cost: float
    estimated_duration: int


@dataclass
class CollectionResult:
    source: SourceType
    data: Optional[Any]
    success: bool
    duration: int  # ms
    cost: float
    cached: bool
    outcome: SourceOutcome
    error: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class CollectionSummary:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    total_cost: float = 0.0
    total_duration: int = 0
    cache_hit_rate: float = 0.0
    quality_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DataQuality:
    completeness: float = 0.0
    freshness: float = 0.0
    reliability: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MultiSourceData:
    """
    Consumer-facing aggregate of one collection.

    `sources` only holds sources that produced a payload; `source_status`
    distinguishes "nothing to report" from "failed" for everything planned.
    """

    company_name: str
    sources: Dict[SourceType, Any] = field(default_factory=dict)
    source_status: Dict[SourceType, SourceOutcome] = field(default_factory=dict)
    errors: Dict[SourceType, str] = field(default_factory=dict)
    total_new_cost: float = 0.0
    total_cache_savings: float = 0.0
    cache_hits: int = 0
    new_api_calls: int = 0
    collection_duration: int = 0
    data_quality: DataQuality = field(default_factory=DataQuality)
    summary: CollectionSummary = field(default_factory=CollectionSummary)

    def __getitem__(self, source: Any) -> Any:
        return self.sources[SourceType.parse(source)]

    def __contains__(self, source: Any) -> bool:
        return SourceType.parse(source) in self.sources

    def __iter__(self) -> Iterator[SourceType]:
        return iter(self.sources)

    def get(self, source: Any, default: Any = None) -> Any:
        return self.sources.get(SourceType.parse(source), default)

    def failed_sources(self) -> List[SourceType]:
        return [s for s, o in self.source_status.items() if o == SourceOutcome.errored]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company_name": self.company_name,
            "sources": {s.value: payload for s, payload in self.sources.items()},
            "source_status": {s.value: o.value for s, o in self.source_status.items()},
            "errors": {s.value: e for s, e in self.errors.items()},
            "total_new_cost": self.total_new_cost,
            "total_cache_savings": self.total_cache_savings,
            "cache_hits": self.cache_hits,
            "new_api_calls": self.new_api_calls,
            "collection_duration": self.collection_duration,
            "data_quality": self.data_quality.to_dict(),
            "summary": self.summary.to_dict(),
        }


# ---------------------------------------------------------------------------
# Facade request/response shapes
# ---------------------------------------------------------------------------


@dataclass
class CollectionMetrics:
    total_requests: int
    cache_hits: int
    api_calls: int
    total_cost: float
    total_savings: float
    average_response_time: int
    requests_by_consumer: Dict[str, int]
    costs_by_consumer: Dict[str, float]
    savings_by_consumer: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CustomerIntelligenceRequest:
    customer_company: str
    vendor_company: str
    consumer_type: ConsumerType = ConsumerType.customer_intelligence
    max_cost: Optional[float] = None
    urgency: str = "medium"
    required_datasets: Optional[List[DatasetType]] = None


@dataclass
class CustomerIntelligenceResponse:
    plan: ContextAwareCollectionPlan
    data: MultiSourceData
    metrics: CollectionMetrics
    vendor_context: VendorContext
    quality_score: int
    recommendations: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "data": self.data.to_dict(),
            "metrics": self.metrics.to_dict(),
            "vendor_context": self.vendor_context.to_dict(),
            "quality_score": self.quality_score,
            "recommendations": list(self.recommendations),
        }


@dataclass
class RawDataAvailability:
    company_name: str
    sources: Dict[str, bool]
    overall_availability: float
    last_checked: str
    max_age_hours: float
    oldest_entry_age_hours: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SourceAvailability:
    source: str
    available: bool
    response_time: Optional[int] = None
    error_message: Optional[str] = None
    last_checked: str = field(default_factory=utc_now_iso)


@dataclass
class OrchestrationHealth:
    is_healthy: bool
    status: str  # "healthy" | "degraded" | "unhealthy"
    components: Dict[str, bool]
    sources: List[SourceAvailability]
    recommendations: List[str]
    last_check: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
