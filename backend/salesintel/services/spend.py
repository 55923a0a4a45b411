# backend/salesintel/services/spend.py
from __future__ import annotations

import threading
from typing import Any, Dict

from .types import CollectionMetrics, ConsumerType, MultiSourceData, SourceOutcome


def _source_totals() -> Dict[str, Any]:
    return {"cost_usd": 0.0, "saved_usd": 0.0, "api_calls": 0, "cache_hits": 0}


def _consumer_totals() -> Dict[str, Any]:
    return {"cost_usd": 0.0, "saved_usd": 0.0, "requests": 0}


class SpendTracker:
    """
    Per-process ledger of what each consumer paid for (and saved) per source.

    The facade lives for the whole process, so only running totals are kept:
    size is bounded by the number of sources and consumers, not by traffic.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sources: Dict[str, Dict[str, Any]] = {}
        self._consumers: Dict[str, Dict[str, Any]] = {}
        self._duration_total_ms = 0
        self._duration_count = 0

    def add_record(
        self,
        consumer: str,
        source: str,
        *,
        cost_usd: float = 0.0,
        saved_usd: float = 0.0,
        cached: bool = False,
        outcome: str | None = None,
    ) -> None:
        cost = float(cost_usd or 0.0)
        saved = float(saved_usd or 0.0)
        with self._lock:
            src = self._sources.setdefault(source, _source_totals())
            src["cost_usd"] += cost
            src["saved_usd"] += saved
            if cached:
                src["cache_hits"] += 1
            elif outcome == SourceOutcome.collected.value:
                src["api_calls"] += 1

            cons = self._consumers.setdefault(consumer or "unknown", _consumer_totals())
            cons["cost_usd"] += cost
            cons["saved_usd"] += saved

    def record_collection(self, consumer: ConsumerType, data: MultiSourceData, costs: Dict[str, float]) -> None:
        """Book one request: every planned source plus the request counter."""
        for source, outcome in data.source_status.items():
            cached = outcome == SourceOutcome.cached
            paid = outcome == SourceOutcome.collected
            self.add_record(
                consumer.value,
                source.value,
                cost_usd=costs.get(source.value, 0.0) if paid else 0.0,
                saved_usd=costs.get(source.value, 0.0) if cached else 0.0,
                cached=cached,
                outcome=outcome.value,
            )
        with self._lock:
            self._consumers.setdefault(consumer.value, _consumer_totals())["requests"] += 1
            self._duration_total_ms += int(data.collection_duration)
            self._duration_count += 1

    def summarize(self) -> dict:
        with self._lock:
            sources = {k: dict(v) for k, v in self._sources.items()}
            consumers = {k: dict(v) for k, v in self._consumers.items()}

        return {
            "sources": sources,
            "consumers": consumers,
            "total_cost_usd": sum(s["cost_usd"] for s in sources.values()),
            "total_saved_usd": sum(s["saved_usd"] for s in sources.values()),
        }

    def metrics(self) -> CollectionMetrics:
        summary = self.summarize()
        with self._lock:
            durations, count = self._duration_total_ms, self._duration_count

        consumers = summary["consumers"]
        return CollectionMetrics(
            total_requests=sum(c["requests"] for c in consumers.values()),
            cache_hits=sum(s["cache_hits"] for s in summary["sources"].values()),
            api_calls=sum(s["api_calls"] for s in summary["sources"].values()),
            total_cost=round(summary["total_cost_usd"], 2),
            total_savings=round(summary["total_saved_usd"], 2),
            average_response_time=int(durations / count) if count else 0,
            requests_by_consumer={k: v["requests"] for k, v in consumers.items()},
            costs_by_consumer={k: round(v["cost_usd"], 2) for k, v in consumers.items()},
            savings_by_consumer={k: round(v["saved_usd"], 2) for k, v in consumers.items()},
        )
