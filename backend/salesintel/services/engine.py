# backend/salesintel/services/engine.py
"""
Executes a DataCollectionPlan.

1. Cache phase: every planned source is looked up concurrently.
2. API phase: misses are fanned out in bounded batches, each call wrapped
   in the retry combinator.
3. Every payload that came back from an API is written to the cache straight
   away, so partial failures still leave reusable entries behind.
4. Cache and API results are merged into one MultiSourceData.

Only CostLimitExceeded leaves this module; source and cache failures degrade
into a lower-completeness aggregate.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .orchestration_core import (
    MS_PER_HOUR,
    OrchestrationConfig,
    Sleep,
    cache_key,
    cache_type_of,
    cost_of,
    data_quality_score,
    duration_of,
    entry_age_ms,
    is_expired,
    reliability_of,
    round_cost,
    run_in_batches,
    ttl_hours_of,
    validate_cost_limits,
    with_retry,
)
from .types import (
    CollectionResult,
    CollectionTask,
    CollectionSummary,
    DataCollectionPlan,
    DataQuality,
    MultiSourceData,
    SourceOutcome,
    SourceType,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class DataCollectionEngine:
    def __init__(
        self,
        config: OrchestrationConfig,
        registry: Any,
        cache: Any,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.registry = registry
        self.cache = cache
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Cache phase
    # ------------------------------------------------------------------

    async def _read_cached(
        self,
        plan: DataCollectionPlan,
        source: SourceType,
    ) -> Optional[Tuple[CollectionResult, float]]:
        key = cache_key(source, plan.company_name)
        started = time.monotonic()
        try:
            entry = await self.cache.get_raw_json(key)
        except Exception:
            logger.exception(
                "Cache read failed for %s; treating as miss",
                key,
                extra={"source": source.value, "company_name": plan.company_name},
            )
            return None

        if not isinstance(entry, dict) or entry.get("data") is None:
            return None
        if is_expired(entry, plan.max_cache_age_hours):
            logger.debug("Cache entry %s is stale", key, extra={"source": source.value})
            return None

        result = CollectionResult(
            source=source,
            data=entry["data"],
            success=True,
            duration=_elapsed_ms(started),
            cost=0.0,
            cached=True,
            outcome=SourceOutcome.cached,
            timestamp=entry.get("timestamp"),
        )
        return result, entry_age_ms(entry) or 0.0

    async def _cache_phase(
        self,
        plan: DataCollectionPlan,
    ) -> Dict[SourceType, Tuple[CollectionResult, float]]:
        if not self.config.cache_enabled or self.cache is None:
            return {}
        lookups = await asyncio.gather(
            *(self._read_cached(plan, s) for s in plan.to_collect),
            return_exceptions=True,
        )
        hits: Dict[SourceType, Tuple[CollectionResult, float]] = {}
        for source, hit in zip(plan.to_collect, lookups):
            if isinstance(hit, BaseException):
                logger.error("Unexpected cache lookup error for %s: %s", source.value, hit)
                continue
            if hit is not None:
                hits[source] = hit
        return hits

    # ------------------------------------------------------------------
    # API phase
    # ------------------------------------------------------------------

    async def _write_back(self, plan: DataCollectionPlan, source: SourceType, payload: Any) -> None:
        if not self.config.cache_enabled or self.cache is None:
            return
        now = datetime.now(timezone.utc)
        ttl_hours = ttl_hours_of(source)
        entry = {
            "data": payload,
            "source": source.value,
            "company_name": plan.company_name,
            "timestamp": now.isoformat(),
            "expires_at": datetime.fromtimestamp(
                now.timestamp() + ttl_hours * 3600, tz=timezone.utc
            ).isoformat(),
            "collected_by": plan.requester.value,
        }
        try:
            await self.cache.set_raw_json(
                cache_key(source, plan.company_name), entry, cache_type_of(source)
            )
        except Exception:
            logger.exception(
                "Cache write failed for %s",
                source.value,
                extra={"source": source.value, "company_name": plan.company_name},
            )

    def build_tasks(self, plan: DataCollectionPlan, sources: List[SourceType]) -> List[CollectionTask]:
        """One task per source; priority follows the plan order (1 = first)."""
        order = {s: i + 1 for i, s in enumerate(plan.to_collect)}
        return [
            CollectionTask(
                source=s,
                company_name=plan.company_name,
                priority=order.get(s, len(order) + 1),
                estimated_cost=cost_of(s, self.config.source_costs),
                estimated_duration=duration_of(s),
            )
            for s in sources
        ]

    async def _collect_one(self, plan: DataCollectionPlan, task: CollectionTask) -> CollectionResult:
        source = task.source
        collector = self.registry.get(source)
        if collector is None:
            logger.warning(
                "No collector registered for '%s'; skipping",
                source.value,
                extra={"source": source.value},
            )
            return CollectionResult(
                source=source,
                data=None,
                success=False,
                duration=0,
                cost=0.0,
                cached=False,
                outcome=SourceOutcome.skipped,
                error="no collector registered",
            )

        started = time.monotonic()
        try:
            payload = await with_retry(
                lambda: collector(plan.company_name),
                self.config.retry_attempts,
                self.config.retry_base_delay_seconds,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.warning(
                "Source '%s' failed for '%s' after retries: %s",
                source.value,
                plan.company_name,
                e,
                extra={"source": source.value, "company_name": plan.company_name},
            )
            return CollectionResult(
                source=source,
                data=None,
                success=False,
                duration=_elapsed_ms(started),
                cost=0.0,
                cached=False,
                outcome=SourceOutcome.errored,
                error=str(e) or e.__class__.__name__,
            )

        if payload is None:
            return CollectionResult(
                source=source,
                data=None,
                success=False,
                duration=_elapsed_ms(started),
                cost=0.0,
                cached=False,
                outcome=SourceOutcome.empty,
            )

        await self._write_back(plan, source, payload)
        logger.info(
            "Collected '%s' for '%s' (priority %d)",
            source.value,
            plan.company_name,
            task.priority,
            extra={"source": source.value, "company_name": plan.company_name},
        )
        return CollectionResult(
            source=source,
            data=payload,
            success=True,
            duration=_elapsed_ms(started),
            cost=task.estimated_cost,
            cached=False,
            outcome=SourceOutcome.collected,
            timestamp=utc_now_iso(),
        )

    async def _api_phase(
        self,
        plan: DataCollectionPlan,
        sources: List[SourceType],
    ) -> Dict[SourceType, CollectionResult]:
        out: Dict[SourceType, CollectionResult] = {}
        batched = await run_in_batches(
            self.build_tasks(plan, sources),
            lambda t: self._collect_one(plan, t),
            self.config.max_parallel_sources,
            self.config.batch_pause_seconds,
            sleep=self._sleep,
        )
        for task, result in batched:
            source = task.source
            if isinstance(result, BaseException):
                logger.error(
                    "Unhandled error collecting '%s': %s",
                    source.value,
                    result,
                    extra={"source": source.value},
                )
                result = CollectionResult(
                    source=source,
                    data=None,
                    success=False,
                    duration=0,
                    cost=0.0,
                    cached=False,
                    outcome=SourceOutcome.errored,
                    error=str(result),
                )
            out[source] = result
        return out

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge(
        self,
        plan: DataCollectionPlan,
        results: Dict[SourceType, CollectionResult],
        ages_ms: Dict[SourceType, float],
        duration_ms: int,
    ) -> MultiSourceData:
        data = MultiSourceData(company_name=plan.company_name)
        for source in plan.to_collect:
            result = results[source]
            data.source_status[source] = result.outcome
            if result.success:
                data.sources[source] = result.data
            if result.error:
                data.errors[source] = result.error

        successful = [results[s] for s in plan.to_collect if results[s].success]
        failed = [
            r for r in results.values()
            if r.outcome in (SourceOutcome.errored, SourceOutcome.skipped)
        ]
        hits = [r for r in successful if r.cached]
        fresh = [r for r in successful if not r.cached]
        total = len(plan.to_collect)

        data.cache_hits = len(hits)
        data.new_api_calls = len(fresh)
        data.total_new_cost = round_cost(sum(r.cost for r in fresh))
        data.total_cache_savings = round_cost(
            sum(cost_of(r.source, self.config.source_costs) for r in hits)
        )
        data.collection_duration = duration_ms

        if successful:
            freshness = [
                max(0.0, 1.0 - ages_ms.get(r.source, 0.0) / (ttl_hours_of(r.source) * MS_PER_HOUR))
                for r in successful
            ]
            data.data_quality = DataQuality(
                completeness=len(successful) / total if total else 0.0,
                freshness=sum(freshness) / len(freshness),
                reliability=sum(reliability_of(r.source) for r in successful) / len(successful) / 100,
            )
            quality = int(
                sum(data_quality_score(data.sources, r.source) for r in successful) / len(successful)
            )
        else:
            quality = 0

        data.summary = CollectionSummary(
            total_tasks=total,
            successful_tasks=len(successful),
            failed_tasks=len(failed),
            total_cost=data.total_new_cost,
            total_duration=duration_ms,
            cache_hit_rate=(len(hits) / total) if total else 0.0,
            quality_score=quality,
        )
        return data

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute_parallel_collection(self, plan: DataCollectionPlan) -> MultiSourceData:
        validate_cost_limits(plan.estimated_cost, plan.max_cost)
        started = time.monotonic()

        hits = await self._cache_phase(plan)
        results: Dict[SourceType, CollectionResult] = {s: r for s, (r, _) in hits.items()}
        ages_ms: Dict[SourceType, float] = {s: age for s, (_, age) in hits.items()}

        misses = [s for s in plan.to_collect if s not in results]
        if misses:
            results.update(await self._api_phase(plan, misses))

        data = self._merge(plan, results, ages_ms, _elapsed_ms(started))
        logger.info(
            "Collection for '%s' done: %d cached, %d fetched, %d failed, $%.2f",
            plan.company_name,
            data.cache_hits,
            data.new_api_calls,
            data.summary.failed_tasks,
            data.total_new_cost,
            extra={"company_name": plan.company_name, "consumer_type": plan.requester.value},
        )
        return data
