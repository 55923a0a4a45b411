# backend/salesintel/services/planner.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .catalog import (
    apply_redundancy_rules,
    catalog_rank,
    datasets_for,
    requirements_for,
    sources_for_datasets,
)
from .orchestration_core import (
    OrchestrationConfig,
    cost_of,
    duration_of,
    validate_cost_limits,
    within_budget,
)
from .types import (
    ConsumerType,
    ContextAwareCollectionPlan,
    DataCollectionPlan,
    DatasetType,
    SourceType,
    VendorContext,
    _zero_attribution,
)

logger = logging.getLogger(__name__)

# Contextual priority scoring
BASE_PRIORITY = 50
INDUSTRY_BONUS = 20
PRODUCT_BONUS = 15
COMPETITOR_BONUS = 25
MAX_PRIORITY = 100

INDUSTRY_RELATED = (DatasetType.industry_analysis, DatasetType.competitive_landscape)
PRODUCT_RELATED = (DatasetType.technology_stack, DatasetType.product_reviews)

# Sorts after every catalog source while keeping input order (stable sort)
_UNRANKED = (10**6, float("inf"))


def contextual_datasets(
    vendor_context: VendorContext,
    required_datasets: Optional[Sequence[Any]] = None,
) -> List[DatasetType]:
    """Requested datasets plus whatever the vendor's populated attributes call for."""
    datasets: List[DatasetType] = []
    for raw in required_datasets or []:
        d = DatasetType.parse(raw)
        if d is None:
            logger.warning("Unknown dataset id '%s'; skipping", raw)
            continue
        datasets.append(d)

    if vendor_context.industry:
        datasets += [DatasetType.industry_analysis, DatasetType.competitive_landscape]
    if vendor_context.products:
        datasets += [DatasetType.technology_stack, DatasetType.product_reviews]
    if vendor_context.target_markets:
        datasets += [DatasetType.market_presence, DatasetType.geographic_distribution]

    return list(dict.fromkeys(datasets))


def contextual_priorities(
    vendor_context: VendorContext,
    datasets: Sequence[DatasetType],
) -> Dict[str, int]:
    priorities: Dict[str, int] = {}
    for d in datasets:
        priority = BASE_PRIORITY
        if vendor_context.industry and d in INDUSTRY_RELATED:
            priority += INDUSTRY_BONUS
        if vendor_context.products and d in PRODUCT_RELATED:
            priority += PRODUCT_BONUS
        if vendor_context.competitors and d == DatasetType.competitive_landscape:
            priority += COMPETITOR_BONUS
        priorities[d.value] = min(MAX_PRIORITY, priority)
    return priorities


class CollectionPlanner:
    """
    Turns (company, consumer, budget) into a DataCollectionPlan.

    Selection is greedy over catalog-ordered candidates; a source that would
    push the running total past the budget is skipped, never partially billed.
    Cache awareness happens at execution time, so plans always carry an empty
    from_cache.
    """

    def __init__(self, config: OrchestrationConfig, registry: Any = None) -> None:
        self.config = config
        self.registry = registry

    # ------------------------------------------------------------------
    # Candidate resolution
    # ------------------------------------------------------------------

    def _clean_sources(self, raw_sources: Sequence[Any]) -> List[SourceType]:
        cleaned: List[SourceType] = []
        for raw in raw_sources:
            src = SourceType.parse(raw)
            if src is None:
                logger.warning("Unknown source id '%s'; skipping", raw, extra={"source": str(raw)})
                continue
            if self.registry is not None and self.registry.get(src) is None:
                logger.warning(
                    "No collector registered for '%s'; skipping",
                    src.value,
                    extra={"source": src.value},
                )
                continue
            if src not in cleaned:
                cleaned.append(src)
        return cleaned

    def default_sources_for(self, consumer: ConsumerType) -> List[SourceType]:
        defaults = self.config.default_sources.get(consumer)
        if defaults is None:
            defaults = tuple(sources_for_datasets(datasets_for(consumer)))
        return apply_redundancy_rules(list(defaults), consumer)

    def _candidates(
        self,
        consumer: ConsumerType,
        required_sources: Optional[Sequence[Any]],
    ) -> List[SourceType]:
        if required_sources:
            return self._clean_sources(required_sources)
        return self._clean_sources(self.default_sources_for(consumer))

    @staticmethod
    def _catalog_order(sources: Sequence[SourceType]) -> List[SourceType]:
        return sorted(sources, key=lambda s: catalog_rank(s) or _UNRANKED)

    def _select_within_budget(
        self,
        candidates: Sequence[SourceType],
        max_cost: float,
    ) -> Tuple[List[SourceType], float]:
        selected: List[SourceType] = []
        running = 0.0
        for src in candidates:
            cost = cost_of(src, self.config.source_costs)
            if within_budget(running + cost, max_cost):
                selected.append(src)
                running += cost
            else:
                logger.info(
                    "Skipping '%s': $%.2f would exceed budget $%.2f",
                    src.value,
                    running + cost,
                    max_cost,
                    extra={"source": src.value},
                )
        # Drop float noise only; sub-cent prices must stay visible in the estimate
        return selected, round(running, 6)

    def _build_plan(
        self,
        company_name: str,
        consumer: ConsumerType,
        ordered_candidates: Sequence[SourceType],
        max_cost: float,
    ) -> DataCollectionPlan:
        selected, estimated_cost = self._select_within_budget(ordered_candidates, max_cost)
        validate_cost_limits(estimated_cost, max_cost)

        attribution = _zero_attribution()
        attribution[consumer.value] = estimated_cost

        plan = DataCollectionPlan(
            company_name=company_name,
            requester=consumer,
            to_collect=tuple(selected),
            from_cache=(),
            estimated_cost=estimated_cost,
            estimated_duration=max((duration_of(s) for s in selected), default=0),
            cache_savings=0.0,
            costs_attribution=attribution,
            max_cost=max_cost,
            max_cache_age_hours=self.config.max_cache_age_for(consumer),
        )
        logger.info(
            "Planned %d sources for '%s' at $%.2f (budget $%.2f)",
            len(selected),
            company_name,
            estimated_cost,
            max_cost,
            extra={"company_name": company_name, "consumer_type": consumer.value},
        )
        return plan

    @staticmethod
    def _resolve_consumer(consumer_type: Any) -> ConsumerType:
        consumer = ConsumerType.parse(consumer_type)
        if consumer is None:
            logger.warning(
                "Unknown consumer type '%s'; planning as 'test'",
                consumer_type,
                extra={"consumer_type": str(consumer_type)},
            )
            return ConsumerType.test
        return consumer

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_collection_plan(
        self,
        company_name: str,
        consumer_type: Any,
        max_cost: Optional[float] = None,
        required_sources: Optional[Sequence[Any]] = None,
    ) -> DataCollectionPlan:
        consumer = self._resolve_consumer(consumer_type)
        budget = self.config.budget_for(consumer) if max_cost is None else float(max_cost)

        candidates = self._catalog_order(self._candidates(consumer, required_sources))
        return self._build_plan(company_name, consumer, candidates, budget)

    def create_context_aware_collection_plan(
        self,
        company_name: str,
        consumer_type: Any,
        vendor_context: VendorContext,
        max_cost: Optional[float] = None,
        required_datasets: Optional[Sequence[Any]] = None,
    ) -> ContextAwareCollectionPlan:
        """
        Base defaults first (catalog order), then the primary source of each
        contextual dataset in descending priority. Priorities only order the
        optional extras; the budget walk is the same as the base plan's.
        """
        consumer = self._resolve_consumer(consumer_type)
        budget = self.config.budget_for(consumer) if max_cost is None else float(max_cost)

        datasets = contextual_datasets(vendor_context, required_datasets)
        priorities = contextual_priorities(vendor_context, datasets)

        candidates = self._catalog_order(self._candidates(consumer, None))
        by_priority = sorted(datasets, key=lambda d: priorities[d.value], reverse=True)
        for d in by_priority:
            req = requirements_for(d)
            if req is None or req.primary_source is None:
                continue
            for src in self._clean_sources([req.primary_source]):
                if src not in candidates:
                    candidates.append(src)

        plan = self._build_plan(company_name, consumer, candidates, budget)
        return ContextAwareCollectionPlan(
            plan=plan,
            vendor_context=vendor_context,
            customer_specific_datasets=tuple(datasets),
            contextual_priorities=priorities,
        )
