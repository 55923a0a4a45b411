# backend/salesintel/services/catalog.py
"""
Dataset requirements catalog.

Maps each logical dataset (e.g. "decision_makers") to the ordered list of
sources able to satisfy it, with per-source cost, reliability and freshness
profile, and maps each consumer type to the datasets it needs.

Pure data plus lookups: nothing in here makes a network call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .types import ConsumerType, DatasetType, SourceType

logger = logging.getLogger(__name__)

# Cost tier boundaries (USD per call)
TIER1_MAX_COST = 0.02
TIER2_MAX_COST = 0.08

FALLBACK_STRATEGIES = ("next_priority", "cheapest_reliable", "skip")


def cost_tier_for(cost: float) -> int:
    if cost <= TIER1_MAX_COST:
        return 1
    if cost <= TIER2_MAX_COST:
        return 2
    return 3


@dataclass(frozen=True)
class SourceOption:
    source: SourceType
    priority: int  # 1 = highest
    cost: float
    reliability: float  # 0-1
    freshness_needed: str  # high | medium | low
    extraction_complexity: str  # simple | moderate | complex
    typical_ttl_hours: int = 24
    fallback_priority: int = 1

    @property
    def cost_tier(self) -> int:
        return cost_tier_for(self.cost)

    @property
    def cost_per_quality(self) -> float:
        if self.reliability <= 0:
            return float("inf")
        return self.cost / self.reliability


@dataclass(frozen=True)
class CostOptimization:
    max_cost_per_dataset: float
    preferred_tier: int
    fallback_strategy: str = "next_priority"


@dataclass(frozen=True)
class DatasetRequirement:
    dataset_id: DatasetType
    sources: Tuple[SourceOption, ...]
    required: bool
    quality_threshold: float
    collection_priority: str = "medium"  # high | medium | low
    freshness_requirement: str = "weekly"  # real_time | daily | weekly | monthly
    description: str = ""
    cost_optimization: CostOptimization = field(
        default_factory=lambda: CostOptimization(0.0, 1)
    )

    @property
    def primary_source(self) -> Optional[SourceType]:
        return self.sources[0].source if self.sources else None

    def option_for(self, source: SourceType) -> Optional[SourceOption]:
        for opt in self.sources:
            if opt.source == source:
                return opt
        return None


# (source, priority, cost, reliability, freshness_needed, extraction_complexity, ttl_hours)
_Row = Tuple[SourceType, int, float, float, str, str, int]


def _dataset(
    dataset_id: DatasetType,
    rows: Sequence[_Row],
    *,
    required: bool,
    quality_threshold: float,
    description: str,
    collection_priority: str,
    freshness_requirement: str,
    fallback_strategy: str = "next_priority",
) -> DatasetRequirement:
    """Build a DatasetRequirement, deriving tiers, cost/quality ranks and budget caps."""
    ordered = sorted(rows, key=lambda r: r[1])
    by_value = sorted(ordered, key=lambda r: (r[2] / r[3] if r[3] else float("inf"), r[1]))
    fallback_rank = {r[0]: i + 1 for i, r in enumerate(by_value)}

    options = tuple(
        SourceOption(
            source=src,
            priority=prio,
            cost=cost,
            reliability=rel,
            freshness_needed=fresh,
            extraction_complexity=complexity,
            typical_ttl_hours=ttl,
            fallback_priority=fallback_rank[src],
        )
        for src, prio, cost, rel, fresh, complexity, ttl in ordered
    )
    optimization = CostOptimization(
        max_cost_per_dataset=max((o.cost for o in options), default=0.0),
        preferred_tier=min((o.cost_tier for o in options), default=1),
        fallback_strategy=fallback_strategy,
    )
    return DatasetRequirement(
        dataset_id=dataset_id,
        sources=options,
        required=required,
        quality_threshold=quality_threshold,
        collection_priority=collection_priority,
        freshness_requirement=freshness_requirement,
        description=description,
        cost_optimization=optimization,
    )


S = SourceType
D = DatasetType

_DATASETS: List[DatasetRequirement] = [
    # ------------------------------------------------------------------
    # Vendor context (understanding the user's company)
    # ------------------------------------------------------------------
    _dataset(
        D.company_products,
        [
            (S.serp_organic, 1, 0.02, 0.85, "medium", "moderate", 168),
            (S.brightdata, 2, 0.08, 0.90, "low", "simple", 336),
        ],
        required=True,
        quality_threshold=0.80,
        description="Products and services offered by the vendor company",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.value_propositions,
        [
            (S.serp_organic, 1, 0.02, 0.80, "medium", "complex", 168),
            (S.brightdata, 2, 0.08, 0.85, "low", "moderate", 336),
        ],
        required=True,
        quality_threshold=0.75,
        description="Key differentiators and unique value propositions",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.competitive_landscape,
        [
            (S.serp_organic, 1, 0.03, 0.85, "medium", "complex", 168),
            (S.brightdata, 2, 0.10, 0.90, "low", "moderate", 336),
        ],
        required=True,
        quality_threshold=0.80,
        description="Direct and indirect competitors analysis",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.positioning_strategy,
        [(S.serp_organic, 1, 0.02, 0.75, "medium", "complex", 168)],
        required=False,
        quality_threshold=0.70,
        description="How vendor positions against competitors",
        collection_priority="medium",
        freshness_requirement="weekly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.target_markets,
        [
            (S.serp_organic, 1, 0.02, 0.80, "low", "moderate", 336),
            (S.brightdata, 2, 0.08, 0.85, "low", "simple", 336),
        ],
        required=False,
        quality_threshold=0.75,
        description="Industries and customer segments served",
        collection_priority="medium",
        freshness_requirement="monthly",
    ),
    _dataset(
        D.pricing_model,
        [(S.serp_organic, 1, 0.02, 0.70, "medium", "complex", 168)],
        required=False,
        quality_threshold=0.65,
        description="Pricing strategy and models",
        collection_priority="low",
        freshness_requirement="monthly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.content_themes,
        [(S.serp_organic, 1, 0.02, 0.75, "medium", "complex", 168)],
        required=False,
        quality_threshold=0.70,
        description="Content themes and messaging strategies",
        collection_priority="low",
        freshness_requirement="monthly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.sales_methodology,
        [(S.serp_organic, 1, 0.02, 0.70, "low", "complex", 336)],
        required=False,
        quality_threshold=0.65,
        description="Sales process and methodology",
        collection_priority="low",
        freshness_requirement="monthly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.company_culture,
        [(S.serp_organic, 1, 0.02, 0.75, "low", "moderate", 336)],
        required=False,
        quality_threshold=0.70,
        description="Company culture and values",
        collection_priority="low",
        freshness_requirement="monthly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.market_presence,
        [
            (S.serp_organic, 1, 0.02, 0.80, "low", "moderate", 336),
            (S.brightdata, 2, 0.08, 0.85, "low", "simple", 336),
        ],
        required=False,
        quality_threshold=0.75,
        description="Geographic and market footprint",
        collection_priority="medium",
        freshness_requirement="monthly",
    ),
    # ------------------------------------------------------------------
    # Customer intelligence (understanding prospects)
    # ------------------------------------------------------------------
    _dataset(
        D.decision_makers,
        [
            (S.snov_contacts, 1, 0.10, 0.90, "high", "simple", 24),
            (S.apollo_contacts, 2, 0.15, 0.85, "high", "simple", 24),
            (S.serp_linkedin, 3, 0.03, 0.75, "medium", "complex", 48),
        ],
        required=True,
        quality_threshold=0.85,
        description="Key decision makers and stakeholders",
        collection_priority="high",
        freshness_requirement="daily",
        fallback_strategy="cheapest_reliable",
    ),
    _dataset(
        D.tech_stack,
        [
            (S.brightdata, 1, 0.08, 0.85, "medium", "moderate", 168),
            (S.serp_organic, 2, 0.02, 0.70, "medium", "complex", 168),
        ],
        required=True,
        quality_threshold=0.80,
        description="Current technology stack and preferences",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.business_challenges,
        [
            (S.serp_news, 1, 0.02, 0.80, "high", "complex", 24),
            (S.serp_organic, 2, 0.02, 0.75, "medium", "complex", 72),
        ],
        required=False,
        quality_threshold=0.75,
        description="Current business challenges and pain points",
        collection_priority="high",
        freshness_requirement="daily",
    ),
    _dataset(
        D.buying_signals,
        [
            (S.serp_news, 1, 0.02, 0.85, "high", "moderate", 12),
            (S.serp_jobs, 2, 0.02, 0.80, "high", "moderate", 24),
        ],
        required=False,
        quality_threshold=0.80,
        description="Purchase intent and buying signals",
        collection_priority="high",
        freshness_requirement="real_time",
    ),
    _dataset(
        D.recent_activities,
        [
            (S.serp_news, 1, 0.02, 0.90, "high", "simple", 12),
            (S.serp_jobs, 2, 0.02, 0.85, "high", "simple", 24),
        ],
        required=True,
        quality_threshold=0.85,
        description="Recent news, hiring, and business activities",
        collection_priority="high",
        freshness_requirement="real_time",
    ),
    _dataset(
        D.budget_indicators,
        [
            (S.serp_news, 1, 0.02, 0.75, "medium", "complex", 72),
            (S.brightdata, 2, 0.08, 0.80, "low", "moderate", 168),
        ],
        required=False,
        quality_threshold=0.70,
        description="Financial health and spending indicators",
        collection_priority="medium",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.competitive_usage,
        [
            (S.brightdata, 1, 0.08, 0.85, "medium", "moderate", 168),
            (S.serp_organic, 2, 0.02, 0.70, "medium", "complex", 168),
        ],
        required=False,
        quality_threshold=0.75,
        description="Current vendor relationships and solutions",
        collection_priority="medium",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.growth_signals,
        [
            (S.serp_news, 1, 0.02, 0.80, "high", "moderate", 24),
            (S.serp_jobs, 2, 0.02, 0.85, "high", "simple", 24),
        ],
        required=False,
        quality_threshold=0.75,
        description="Growth and expansion indicators",
        collection_priority="medium",
        freshness_requirement="daily",
    ),
    _dataset(
        D.digital_footprint,
        [(S.serp_organic, 1, 0.02, 0.85, "medium", "moderate", 168)],
        required=False,
        quality_threshold=0.75,
        description="Online presence and digital marketing activity",
        collection_priority="low",
        freshness_requirement="weekly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.compliance_requirements,
        [(S.serp_organic, 1, 0.02, 0.75, "low", "complex", 336)],
        required=False,
        quality_threshold=0.70,
        description="Regulatory and compliance requirements",
        collection_priority="low",
        freshness_requirement="monthly",
        fallback_strategy="skip",
    ),
    _dataset(
        D.integration_needs,
        [(S.serp_organic, 1, 0.02, 0.70, "medium", "complex", 168)],
        required=False,
        quality_threshold=0.65,
        description="Technical integration requirements and preferences",
        collection_priority="low",
        freshness_requirement="weekly",
        fallback_strategy="skip",
    ),
    # ------------------------------------------------------------------
    # Context-aware additions (appended when the vendor profile calls for them)
    # ------------------------------------------------------------------
    _dataset(
        D.industry_analysis,
        [
            (S.serp_news, 1, 0.02, 0.80, "medium", "complex", 72),
            (S.serp_organic, 2, 0.02, 0.80, "medium", "complex", 168),
        ],
        required=False,
        quality_threshold=0.70,
        description="Industry trends and dynamics around the prospect",
        collection_priority="medium",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.technology_stack,
        [
            (S.brightdata, 1, 0.08, 0.85, "medium", "moderate", 168),
            (S.serp_jobs, 2, 0.02, 0.75, "high", "complex", 24),
        ],
        required=False,
        quality_threshold=0.75,
        description="Technologies in use, inferred from firmographics and job posts",
        collection_priority="medium",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.product_reviews,
        [
            (S.brightdata, 1, 0.08, 0.85, "low", "simple", 336),
            (S.serp_organic, 2, 0.02, 0.70, "medium", "complex", 168),
        ],
        required=False,
        quality_threshold=0.70,
        description="Review-site sentiment for products the prospect uses",
        collection_priority="low",
        freshness_requirement="monthly",
    ),
    _dataset(
        D.geographic_distribution,
        [
            (S.serp_organic, 1, 0.02, 0.75, "low", "moderate", 336),
            (S.brightdata, 2, 0.08, 0.85, "low", "simple", 336),
        ],
        required=False,
        quality_threshold=0.70,
        description="Office locations and regional footprint",
        collection_priority="low",
        freshness_requirement="monthly",
    ),
    # ------------------------------------------------------------------
    # Shared / basic
    # ------------------------------------------------------------------
    _dataset(
        D.company_name,
        [(S.serp_organic, 1, 0.01, 0.95, "low", "simple", 720)],
        required=True,
        quality_threshold=0.95,
        description="Official company name verification",
        collection_priority="high",
        freshness_requirement="monthly",
    ),
    _dataset(
        D.company_domain,
        [(S.serp_organic, 1, 0.01, 0.95, "low", "simple", 720)],
        required=True,
        quality_threshold=0.95,
        description="Official company website domain",
        collection_priority="high",
        freshness_requirement="monthly",
    ),
    _dataset(
        D.industry,
        [
            (S.serp_organic, 1, 0.01, 0.90, "low", "moderate", 336),
            (S.brightdata, 2, 0.05, 0.85, "low", "simple", 336),
        ],
        required=True,
        quality_threshold=0.85,
        description="Primary industry classification",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.employee_count,
        [
            (S.brightdata, 1, 0.05, 0.80, "medium", "simple", 168),
            (S.serp_organic, 2, 0.01, 0.70, "medium", "moderate", 168),
        ],
        required=False,
        quality_threshold=0.75,
        description="Company size and employee count",
        collection_priority="medium",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.company_overview,
        [
            (S.serp_organic, 1, 0.01, 0.90, "medium", "simple", 168),
            (S.brightdata, 2, 0.05, 0.85, "low", "simple", 336),
        ],
        required=True,
        quality_threshold=0.85,
        description="Comprehensive company overview and description",
        collection_priority="high",
        freshness_requirement="weekly",
    ),
    _dataset(
        D.company_description,
        [(S.serp_organic, 1, 0.01, 0.85, "low", "simple", 336)],
        required=False,
        quality_threshold=0.80,
        description="Basic company description",
        collection_priority="medium",
        freshness_requirement="monthly",
    ),
]

DATASET_REQUIREMENTS: Dict[DatasetType, DatasetRequirement] = {
    d.dataset_id: d for d in _DATASETS
}


CONSUMER_DATASET_REQUIREMENTS: Dict[ConsumerType, List[DatasetType]] = {
    # Basic profile lookup
    ConsumerType.profile: [
        D.company_name,
        D.company_domain,
        D.industry,
        D.employee_count,
        D.company_description,
    ],
    # Understanding the user's own company
    ConsumerType.vendor_context: [
        D.company_name,
        D.company_domain,
        D.industry,
        D.employee_count,
        D.company_overview,
        D.company_products,
        D.value_propositions,
        D.target_markets,
        D.competitive_landscape,
        D.positioning_strategy,
        D.pricing_model,
    ],
    # Understanding prospects
    ConsumerType.customer_intelligence: [
        D.company_name,
        D.company_domain,
        D.industry,
        D.employee_count,
        D.company_overview,
        D.decision_makers,
        D.tech_stack,
        D.business_challenges,
        D.recent_activities,
        D.buying_signals,
        D.growth_signals,
        D.competitive_usage,
        D.budget_indicators,
    ],
    # Minimal-cost smoke testing
    ConsumerType.test: [
        D.company_name,
        D.company_domain,
    ],
    # Resolved per sub-area, see RESEARCH_AREA_DATASETS
    ConsumerType.research: [],
}

# Sub-areas of the "research" consumer; requests pick a subset of these.
RESEARCH_AREA_DATASETS: Dict[str, List[DatasetType]] = {
    "company_basics": [D.company_name, D.company_domain, D.industry, D.company_overview],
    "leadership": [D.decision_makers],
    "technology": [D.tech_stack, D.technology_stack, D.integration_needs],
    "market": [D.competitive_landscape, D.market_presence, D.industry_analysis],
    "signals": [D.recent_activities, D.buying_signals, D.growth_signals],
    "financials": [D.budget_indicators, D.employee_count],
    "reputation": [D.product_reviews, D.digital_footprint],
}


@dataclass(frozen=True)
class RedundancyRule:
    condition: Tuple[SourceType, ...]  # if all of these are already planned
    skip: SourceType  # then drop this one
    context: Tuple[ConsumerType, ...]  # for these consumers
    reason: str


REDUNDANCY_RULES: List[RedundancyRule] = [
    RedundancyRule(
        condition=(S.serp_organic, S.serp_news),
        skip=S.brightdata,
        context=(ConsumerType.profile,),
        reason="Organic + news search covers basic company info",
    ),
    RedundancyRule(
        condition=(S.snov_contacts,),
        skip=S.apollo_contacts,
        context=(ConsumerType.customer_intelligence,),
        reason="Snov contacts cover most contact needs",
    ),
    RedundancyRule(
        condition=(S.serp_organic,),
        skip=S.brightdata,
        context=(ConsumerType.profile,),
        reason="Organic search is enough for a basic profile",
    ),
]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def requirements_for(dataset_id: Any) -> Optional[DatasetRequirement]:
    dataset = DatasetType.parse(dataset_id)
    requirement = DATASET_REQUIREMENTS.get(dataset) if dataset else None
    if requirement is None:
        logger.warning("Unknown dataset id '%s'; skipping", dataset_id)
    return requirement


def datasets_for(
    consumer_type: Any,
    areas: Optional[Iterable[str]] = None,
) -> List[DatasetType]:
    """
    Datasets a consumer needs. The research consumer is resolved from its
    sub-areas (all of them when `areas` is None).
    """
    consumer = ConsumerType.parse(consumer_type)
    if consumer is None:
        logger.warning(
            "Unknown consumer type '%s'; no datasets",
            consumer_type,
            extra={"consumer_type": str(consumer_type)},
        )
        return []

    if consumer != ConsumerType.research:
        return list(CONSUMER_DATASET_REQUIREMENTS.get(consumer, []))

    selected = list(RESEARCH_AREA_DATASETS) if areas is None else list(areas)
    out: List[DatasetType] = []
    for area in selected:
        area_datasets = RESEARCH_AREA_DATASETS.get(area)
        if area_datasets is None:
            logger.warning("Unknown research area '%s'; skipping", area)
            continue
        for d in area_datasets:
            if d not in out:
                out.append(d)
    return out


def sources_for_datasets(datasets: Iterable[Any]) -> List[SourceType]:
    """Priority-1 source of each dataset, de-duplicated in first-seen order."""
    out: List[SourceType] = []
    for d in datasets:
        req = requirements_for(d)
        if req is None or req.primary_source is None:
            continue
        if req.primary_source not in out:
            out.append(req.primary_source)
    return out


def catalog_rank(source: Any) -> Optional[Tuple[int, float]]:
    """
    (best priority, best cost-per-quality) of a source across all datasets,
    or None if no dataset lists it.
    """
    src = SourceType.parse(source)
    if src is None:
        return None
    best: Optional[Tuple[int, float]] = None
    for req in DATASET_REQUIREMENTS.values():
        opt = req.option_for(src)
        if opt is None:
            continue
        key = (opt.priority, opt.cost_per_quality)
        if best is None or key < best:
            best = key
    return best


def apply_redundancy_rules(
    sources: Sequence[SourceType],
    consumer_type: ConsumerType,
) -> List[SourceType]:
    planned = list(sources)
    for rule in REDUNDANCY_RULES:
        if consumer_type not in rule.context or rule.skip not in planned:
            continue
        if all(c in planned for c in rule.condition):
            logger.info(
                "Dropping redundant source '%s': %s",
                rule.skip.value,
                rule.reason,
                extra={"source": rule.skip.value, "consumer_type": consumer_type.value},
            )
            planned.remove(rule.skip)
    return planned


def validate_catalog() -> List[str]:
    """Return every invariant violation found in the shipped tables (empty when sound)."""
    problems: List[str] = []
    for dataset_id, req in DATASET_REQUIREMENTS.items():
        if req.required and not req.sources:
            problems.append(f"{dataset_id.value}: required but has no sources")
        priorities = [o.priority for o in req.sources]
        if priorities != sorted(set(priorities)):
            problems.append(f"{dataset_id.value}: priorities not unique and ascending")
        for o in req.sources:
            if not 0.0 <= o.reliability <= 1.0:
                problems.append(f"{dataset_id.value}/{o.source.value}: reliability out of range")
        if not 0.0 <= req.quality_threshold <= 1.0:
            problems.append(f"{dataset_id.value}: quality_threshold out of range")
        if req.cost_optimization.fallback_strategy not in FALLBACK_STRATEGIES:
            problems.append(f"{dataset_id.value}: unknown fallback strategy")

    for consumer, datasets in CONSUMER_DATASET_REQUIREMENTS.items():
        for d in datasets:
            if d not in DATASET_REQUIREMENTS:
                problems.append(f"{consumer.value}: references unknown dataset {d}")
    for area, datasets in RESEARCH_AREA_DATASETS.items():
        for d in datasets:
            if d not in DATASET_REQUIREMENTS:
                problems.append(f"research/{area}: references unknown dataset {d}")
    return problems
