# backend/salesintel/services/orchestrator.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from .engine import DataCollectionEngine
from .orchestration_core import (
    MS_PER_HOUR,
    SEARCH_SOURCES,
    OrchestrationConfig,
    Sleep,
    cache_key,
    check_orchestration_health,
    cost_of,
    data_quality_score,
    entry_age_ms,
    is_expired,
)
from .planner import CollectionPlanner
from .spend import SpendTracker
from .types import (
    CollectionMetrics,
    ConsumerType,
    ContextAwareCollectionPlan,
    CustomerIntelligenceRequest,
    CustomerIntelligenceResponse,
    DataCollectionPlan,
    MultiSourceData,
    OrchestrationHealth,
    RawDataAvailability,
    SourceType,
    VendorContext,
    utc_now_iso,
)
from .vendor_context import VendorContextResolver

logger = logging.getLogger(__name__)

HistoryRecorder = Callable[..., Optional[UUID]]


class DataSourceOrchestrator:
    """
    Facade over planner + engine.

    Owns the per-consumer budget and TTL defaults (via OrchestrationConfig),
    the vendor-context resolver and the spend ledger. Only CostLimitExceeded
    propagates to callers; everything else degrades into the returned data.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        registry: Any,
        cache: Any,
        history: Optional[HistoryRecorder] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.registry = registry
        self.cache = cache
        self.history = history
        self.planner = CollectionPlanner(config, registry)
        self.engine = DataCollectionEngine(config, registry, cache, sleep=sleep)
        self.spend = SpendTracker()
        self.vendor_contexts = VendorContextResolver(
            cache,
            lambda vendor: self.get_multi_source_data(vendor, ConsumerType.vendor_context),
            ttl_hours=config.vendor_context_ttl_hours,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _consumer(self, consumer_type: Any) -> ConsumerType:
        consumer = ConsumerType.parse(consumer_type)
        if consumer is None:
            logger.warning(
                "Unknown consumer type '%s'; using 'test'",
                consumer_type,
                extra={"consumer_type": str(consumer_type)},
            )
            return ConsumerType.test
        return consumer

    async def _execute(self, plan: DataCollectionPlan, run_id: UUID | None = None) -> MultiSourceData:
        data = await self.engine.execute_parallel_collection(plan)
        self.spend.record_collection(
            plan.requester,
            data,
            {s.value: cost_of(s, self.config.source_costs) for s in plan.to_collect},
        )
        if self.history is not None:
            # Recorders do blocking SQL; keep them off the event loop
            try:
                await asyncio.to_thread(self.history, plan, data, run_id=run_id)
            except Exception:
                logger.exception(
                    "History recorder failed",
                    extra={"company_name": plan.company_name},
                )
        return data

    @staticmethod
    def _request_metrics(consumer: ConsumerType, data: MultiSourceData) -> CollectionMetrics:
        return CollectionMetrics(
            total_requests=1,
            cache_hits=data.cache_hits,
            api_calls=data.new_api_calls,
            total_cost=data.total_new_cost,
            total_savings=data.total_cache_savings,
            average_response_time=data.collection_duration,
            requests_by_consumer={consumer.value: 1},
            costs_by_consumer={consumer.value: data.total_new_cost},
            savings_by_consumer={consumer.value: data.total_cache_savings},
        )

    def _recommendations(
        self,
        consumer: ConsumerType,
        data: MultiSourceData,
        vendor_context: VendorContext,
        quality_score: int,
    ) -> List[str]:
        recommendations: List[str] = []

        if quality_score < self.config.quality_threshold_for(consumer):
            recommendations.append(
                "Consider collecting additional data sources to improve data quality"
            )
        if not any(s in data for s in SEARCH_SOURCES):
            recommendations.append(
                "Search engine data unavailable - consider using alternative sources"
            )
        if not vendor_context.competitors:
            recommendations.append("Enhance vendor context with competitive analysis")

        failed = data.failed_sources()
        if failed:
            recommendations.append(
                f"{len(failed)} sources failed ({', '.join(s.value for s in failed)}); "
                "retry later to fill the gaps"
            )
        if data.sources and data.data_quality.freshness < 0.5:
            recommendations.append("Cached data is ageing - consider a refresh collection")
        return recommendations

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_collection_plan(
        self,
        company_name: str,
        consumer_type: Any,
        max_cost: Optional[float] = None,
        required_sources: Optional[Sequence[Any]] = None,
    ) -> DataCollectionPlan:
        consumer = self._consumer(consumer_type)
        return self.planner.create_collection_plan(
            company_name,
            consumer,
            self.config.budget_for(consumer) if max_cost is None else max_cost,
            required_sources,
        )

    async def get_multi_source_data(
        self,
        company_name: str,
        consumer_type: Any,
        max_cost: Optional[float] = None,
        required_sources: Optional[Sequence[Any]] = None,
        run_id: UUID | None = None,
    ) -> MultiSourceData:
        plan = await self.create_collection_plan(company_name, consumer_type, max_cost, required_sources)
        return await self._execute(plan, run_id=run_id)

    async def get_customer_intelligence(
        self,
        request: CustomerIntelligenceRequest,
    ) -> CustomerIntelligenceResponse:
        consumer = self._consumer(request.consumer_type)
        logger.info(
            "Starting customer intelligence collection for '%s' (vendor '%s')",
            request.customer_company,
            request.vendor_company,
            extra={"company_name": request.customer_company, "consumer_type": consumer.value},
        )

        vendor_context = await self.vendor_contexts.resolve(request.vendor_company)

        context_plan: ContextAwareCollectionPlan = self.planner.create_context_aware_collection_plan(
            request.customer_company,
            consumer,
            vendor_context,
            self.config.budget_for(consumer) if request.max_cost is None else request.max_cost,
            request.required_datasets,
        )
        data = await self._execute(context_plan.plan)

        successful = [s for s in context_plan.plan.to_collect if s in data]
        primary = successful[0] if successful else SourceType.serp_organic
        quality_score = data_quality_score(data.sources, primary)

        return CustomerIntelligenceResponse(
            plan=context_plan,
            data=data,
            metrics=self._request_metrics(consumer, data),
            vendor_context=vendor_context,
            quality_score=quality_score,
            recommendations=self._recommendations(consumer, data, vendor_context, quality_score),
        )

    async def get_raw_data_status(
        self,
        company_name: str,
        sources: Optional[Sequence[Any]] = None,
    ) -> RawDataAvailability:
        """Which sources have a fresh cache entry for this company. No paid calls."""
        targets = [SourceType.parse(s) for s in (sources or self.registry.sources())]
        max_age = self.config.raw_status_max_age_hours
        availability: Dict[str, bool] = {}
        ages: List[float] = []

        for src in targets:
            if src is None:
                continue
            fresh = False
            try:
                entry = await self.cache.get_raw_json(cache_key(src, company_name))
                if isinstance(entry, dict) and entry.get("data") is not None and not is_expired(entry, max_age):
                    fresh = True
                    ages.append(entry_age_ms(entry) or 0.0)
            except Exception:
                logger.exception(
                    "Cache read failed while checking status of '%s'",
                    src.value,
                    extra={"source": src.value, "company_name": company_name},
                )
            availability[src.value] = fresh

        total = len(availability)
        return RawDataAvailability(
            company_name=company_name,
            sources=availability,
            overall_availability=(sum(availability.values()) / total) if total else 0.0,
            last_checked=utc_now_iso(),
            max_age_hours=max_age,
            oldest_entry_age_hours=(max(ages) / MS_PER_HOUR) if ages else None,
        )

    async def check_orchestration_health(self) -> OrchestrationHealth:
        return await check_orchestration_health(self.registry, self.cache)

    def get_metrics(self) -> CollectionMetrics:
        """Process-wide spend/savings since start-up."""
        return self.spend.metrics()


def get_orchestrator() -> DataSourceOrchestrator:
    """Production wiring: settings-driven config, HTTP collectors, Redis, SQL history."""
    from .caching import RedisCacheStore
    from .connectors import build_default_registry
    from .history import record_collection_run

    return DataSourceOrchestrator(
        config=OrchestrationConfig.from_settings(),
        registry=build_default_registry(),
        cache=RedisCacheStore(),
        history=record_collection_run,
    )
