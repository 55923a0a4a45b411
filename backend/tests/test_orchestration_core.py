"""
Tests for orchestration_core.py - Shared Orchestration Helpers

Tests cache key normalization, per-source lookups with fallbacks, TTL
expiry, budget validation, the retry and batching combinators, cost
overrides and the health check.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from salesintel.services import orchestration_core
from salesintel.services.orchestration_core import (
    FALLBACK_COST,
    FALLBACK_DURATION_MS,
    FALLBACK_RELIABILITY,
    CacheType,
    CostLimitExceeded,
    OrchestrationConfig,
    cache_key,
    cache_type_of,
    check_orchestration_health,
    cost_of,
    data_quality_score,
    duration_of,
    health_status,
    is_expired,
    load_source_costs,
    normalize_company_name,
    reliability_of,
    run_in_batches,
    validate_cost_limits,
    with_retry,
)
from salesintel.services.types import ConsumerType, SourceType

from tests.fixtures.orchestration_fixtures import (
    FailingCacheStore,
    InMemoryCacheStore,
    RecordingSleep,
    build_registry,
    returning,
)


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Cache Key Tests
# ---------------------------------------------------------------------------

class TestCacheKey:
    """Tests for cache key generation."""

    @pytest.mark.parametrize("name,expected", [
        ("Acme Corp", "acmecorp"),
        ("ACME corp.", "acmecorp"),
        ("  Acme-Corp, Inc. ", "acmecorpinc"),
        ("AT&T", "att"),
        ("3M", "3m"),
        ("", ""),
    ])
    def test_normalization(self, name, expected):
        """Lowercase, keep only [a-z0-9]."""
        assert normalize_company_name(name) == expected

    def test_key_format(self):
        """Keys are "{source}_{normalized}"."""
        assert cache_key(SourceType.serp_news, "Acme Corp") == "serp_news_acmecorp"

    def test_cosmetic_variants_share_a_key(self):
        """Case and punctuation differences hit the same cache slot."""
        assert cache_key("serp_organic", "Acme, Inc.") == cache_key(SourceType.serp_organic, "ACME INC")

    def test_non_source_prefixes_allowed(self):
        """Auxiliary entries like vendor context use the same scheme."""
        assert cache_key("vendor_context", "Acme") == "vendor_context_acme"


# ---------------------------------------------------------------------------
# Lookup Tests
# ---------------------------------------------------------------------------

class TestSourceLookups:
    """Tests for per-source tables and their fallbacks."""

    def test_known_source_values(self):
        """Known sources return their tabled values."""
        assert cost_of(SourceType.serp_organic) == pytest.approx(0.05)
        assert duration_of(SourceType.brightdata) == 3000
        assert reliability_of(SourceType.serp_linkedin) == 90
        assert cache_type_of(SourceType.snov_contacts) == CacheType.SNOV_CONTACTS_RAW

    def test_unknown_source_fallbacks(self):
        """Unknown ids never raise; they get the documented fallbacks."""
        assert cost_of("carrier_pigeon") == FALLBACK_COST
        assert duration_of("carrier_pigeon") == FALLBACK_DURATION_MS
        assert reliability_of("carrier_pigeon") == FALLBACK_RELIABILITY
        assert cache_type_of("carrier_pigeon") == CacheType.UNKNOWN

    def test_cost_table_override(self):
        """A custom cost table takes precedence; missing entries fall back."""
        costs = {SourceType.serp_organic: 0.01}
        assert cost_of(SourceType.serp_organic, costs) == pytest.approx(0.01)
        assert cost_of(SourceType.serp_news, costs) == FALLBACK_COST


class TestLoadSourceCosts:
    """Tests for the SOURCE_COSTS_JSON override loader."""

    def test_no_override_returns_defaults(self):
        """Empty override leaves the built-in table in place."""
        assert load_source_costs(None)[SourceType.brightdata] == pytest.approx(0.15)

    def test_override_replaces_entries(self):
        """Valid entries replace defaults; others stay."""
        costs = load_source_costs('{"brightdata": 0.5, "serp_news": "0.07"}')
        assert costs[SourceType.brightdata] == pytest.approx(0.5)
        assert costs[SourceType.serp_news] == pytest.approx(0.07)
        assert costs[SourceType.serp_organic] == pytest.approx(0.05)

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2, 3]",
        '{"carrier_pigeon": 1.0}',
        '{"brightdata": -1}',
        '{"brightdata": "cheap"}',
    ])
    def test_bad_overrides_ignored(self, raw):
        """Invalid JSON, unknown sources and bad values leave defaults untouched."""
        assert load_source_costs(raw)[SourceType.brightdata] == pytest.approx(0.15)


# ---------------------------------------------------------------------------
# Expiry Tests
# ---------------------------------------------------------------------------

class TestIsExpired:
    """Tests for TTL checks against entry timestamps."""

    def test_fresh_entry(self):
        """An entry younger than the max age is not expired."""
        entry = {"timestamp": (NOW - timedelta(hours=23)).isoformat()}
        assert not is_expired(entry, 24, now=NOW)

    def test_boundary_is_expired(self):
        """An entry exactly max age old counts as expired."""
        entry = {"timestamp": (NOW - timedelta(hours=24)).isoformat()}
        assert is_expired(entry, 24, now=NOW)

    def test_old_entry(self):
        """Older than the max age is expired."""
        entry = {"timestamp": (NOW - timedelta(hours=25)).isoformat()}
        assert is_expired(entry, 24, now=NOW)

    @pytest.mark.parametrize("entry", [
        None,
        {},
        {"timestamp": None},
        {"timestamp": "yesterday-ish"},
    ])
    def test_missing_or_bad_timestamp_is_expired(self, entry):
        """Entries without a usable timestamp are never served."""
        assert is_expired(entry, 24, now=NOW)

    def test_zulu_and_naive_timestamps(self):
        """Z suffixes and naive timestamps are read as UTC."""
        zulu = {"timestamp": "2024-06-01T11:00:00Z"}
        naive = {"timestamp": "2024-06-01T11:00:00"}
        assert not is_expired(zulu, 2, now=NOW)
        assert not is_expired(naive, 2, now=NOW)


# ---------------------------------------------------------------------------
# Budget Tests
# ---------------------------------------------------------------------------

class TestValidateCostLimits:
    """Tests for the budget guard."""

    def test_within_budget(self):
        """Equal to the budget is allowed."""
        validate_cost_limits(0.20, 0.20)

    def test_float_noise_tolerated(self):
        """0.1 + 0.2 is not over a 0.3 budget."""
        validate_cost_limits(0.1 + 0.2, 0.3)

    def test_sub_cent_overrun_raises(self):
        """Any real overrun counts, even below a cent."""
        with pytest.raises(CostLimitExceeded):
            validate_cost_limits(0.004, 0.0)

    def test_over_budget_raises(self):
        """Over budget raises with both figures attached."""
        with pytest.raises(CostLimitExceeded) as exc_info:
            validate_cost_limits(0.21, 0.20)
        assert exc_info.value.estimated_cost == pytest.approx(0.21)
        assert exc_info.value.max_cost == pytest.approx(0.20)
        assert "0.21" in str(exc_info.value)


class TestDataQualityScore:
    """Tests for the primary-source quality score."""

    def test_single_source(self):
        """One contributing source scores its reliability."""
        assert data_quality_score({SourceType.serp_organic: {"x": 1}}, SourceType.serp_organic) == 85

    def test_multi_source_bonus(self):
        """More than one contributing source adds 5."""
        sources = {SourceType.serp_organic: {"x": 1}, SourceType.serp_news: {"y": 2}}
        assert data_quality_score(sources, SourceType.serp_organic) == 90

    def test_unknown_primary_uses_fallback_reliability(self):
        """An unknown primary source scores the fallback reliability."""
        sources = {SourceType.serp_linkedin: {}, SourceType.serp_news: {}}
        assert data_quality_score(sources, "unknown_source") == FALLBACK_RELIABILITY + 5

    def test_sources_without_data_do_not_count(self):
        """Only sources with a payload earn the multi-source bonus."""
        sources = {SourceType.serp_organic: {"x": 1}, SourceType.serp_news: None}
        assert data_quality_score(sources, SourceType.serp_organic) == 85

    def test_capped_at_100(self, monkeypatch):
        """The bonus never pushes the score past 100."""
        monkeypatch.setitem(orchestration_core.DEFAULT_SOURCE_RELIABILITY, SourceType.serp_linkedin, 98)
        sources = {SourceType.serp_linkedin: {}, SourceType.serp_news: {}}
        assert data_quality_score(sources, SourceType.serp_linkedin) == 100


# ---------------------------------------------------------------------------
# Combinator Tests
# ---------------------------------------------------------------------------

class TestWithRetry:
    """Tests for the retry combinator."""

    def test_success_first_try_no_sleep(self):
        """A successful first attempt never sleeps."""
        sleep = RecordingSleep()
        calls = []

        async def op():
            calls.append(1)
            return "ok"

        assert asyncio.run(with_retry(op, 2, 1.0, sleep=sleep)) == "ok"
        assert len(calls) == 1
        assert sleep.delays == []

    def test_linear_backoff_then_success(self):
        """After failed attempt n we wait base * n."""
        sleep = RecordingSleep()
        attempts = []

        async def op():
            attempts.append(1)
            if len(attempts) < 3:
                raise RuntimeError("flaky")
            return "ok"

        assert asyncio.run(with_retry(op, 2, 1.0, sleep=sleep)) == "ok"
        assert len(attempts) == 3
        assert sleep.delays == [1.0, 2.0]

    def test_exhausted_reraises_last_error(self):
        """max_retries + 1 attempts, then the last error propagates."""
        sleep = RecordingSleep()
        attempts = []

        async def op():
            attempts.append(1)
            raise ValueError(f"attempt {len(attempts)}")

        with pytest.raises(ValueError, match="attempt 3"):
            asyncio.run(with_retry(op, 2, 0.5, sleep=sleep))
        assert len(attempts) == 3
        assert sleep.delays == [0.5, 1.0]

    def test_zero_retries(self):
        """With no retries the op runs exactly once."""
        attempts = []

        async def op():
            attempts.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(with_retry(op, 0, 1.0, sleep=RecordingSleep()))
        assert len(attempts) == 1


class TestRunInBatches:
    """Tests for batched fan-out."""

    def test_order_preserved_and_pauses_between_batches(self):
        """Results keep input order; pauses happen only between batches."""
        sleep = RecordingSleep()

        async def worker(i):
            return i * 10

        out = asyncio.run(run_in_batches([1, 2, 3, 4, 5], worker, 2, 0.5, sleep=sleep))
        assert out == [(1, 10), (2, 20), (3, 30), (4, 40), (5, 50)]
        assert sleep.delays == [0.5, 0.5]

    def test_single_batch_never_pauses(self):
        """Everything fits in one batch: no pause at all."""
        sleep = RecordingSleep()

        async def worker(i):
            return i

        asyncio.run(run_in_batches([1, 2, 3], worker, 5, 0.5, sleep=sleep))
        assert sleep.delays == []

    def test_failure_isolated(self):
        """A failing item is returned as its exception; siblings still complete."""

        async def worker(i):
            if i == 2:
                raise RuntimeError("bad item")
            return i

        out = asyncio.run(run_in_batches([1, 2, 3], worker, 3, 0, sleep=RecordingSleep()))
        assert out[0] == (1, 1)
        assert isinstance(out[1][1], RuntimeError)
        assert out[2] == (3, 3)

    def test_batch_concurrency_bounded(self):
        """No more than batch_size workers run at once."""
        running = 0
        peak = 0

        async def worker(i):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            running -= 1
            return i

        asyncio.run(run_in_batches(list(range(7)), worker, 3, 0, sleep=RecordingSleep()))
        assert peak <= 3

    def test_empty_input(self):
        """No items, no work, no pauses."""

        async def worker(i):
            return i

        assert asyncio.run(run_in_batches([], worker, 3, 1.0, sleep=RecordingSleep())) == []


# ---------------------------------------------------------------------------
# Config Tests
# ---------------------------------------------------------------------------

class TestOrchestrationConfig:
    """Tests for per-consumer defaults."""

    @pytest.mark.parametrize("consumer,budget", [
        (ConsumerType.profile, 2.0),
        (ConsumerType.vendor_context, 5.0),
        (ConsumerType.customer_intelligence, 7.0),
        (ConsumerType.test, 1.0),
        (ConsumerType.research, 3.0),
    ])
    def test_default_budgets(self, consumer, budget):
        """Each consumer gets its own default budget."""
        assert OrchestrationConfig().budget_for(consumer) == budget

    @pytest.mark.parametrize("consumer,hours", [
        (ConsumerType.profile, 168),
        (ConsumerType.vendor_context, 72),
        (ConsumerType.customer_intelligence, 24),
        (ConsumerType.test, 1),
        (ConsumerType.research, 48),
    ])
    def test_default_cache_ages(self, consumer, hours):
        """Each consumer gets its own maximum cache age."""
        assert OrchestrationConfig().max_cache_age_for(consumer) == hours

    @pytest.mark.parametrize("consumer,threshold", [
        (ConsumerType.profile, 70),
        (ConsumerType.vendor_context, 80),
        (ConsumerType.customer_intelligence, 85),
        (ConsumerType.test, 60),
        (ConsumerType.research, 75),
    ])
    def test_quality_thresholds(self, consumer, threshold):
        """Each consumer's quality target is read on the 0-100 score scale."""
        assert OrchestrationConfig().quality_threshold_for(consumer) == threshold

    def test_quality_threshold_falls_back_to_global(self):
        config = OrchestrationConfig(cache_configs={}, quality_threshold=65)
        assert config.quality_threshold_for(ConsumerType.profile) == 65

    def test_research_defaults_derived_from_catalog(self):
        """Research sources come from the primary sources of its datasets."""
        sources = OrchestrationConfig().default_sources[ConsumerType.research]
        assert SourceType.serp_organic in sources
        assert SourceType.snov_contacts in sources
        assert len(sources) == len(set(sources))


# ---------------------------------------------------------------------------
# Health Tests
# ---------------------------------------------------------------------------

class TestHealthCheck:
    """Tests for the orchestration health check."""

    @pytest.mark.parametrize("available,total,status", [
        (5, 5, "healthy"),
        (4, 5, "healthy"),
        (3, 5, "degraded"),
        (1, 2, "degraded"),
        (2, 5, "unhealthy"),
        (0, 0, "unhealthy"),
    ])
    def test_status_thresholds(self, available, total, status):
        """>= 80% healthy, >= 50% degraded, otherwise unhealthy."""
        assert health_status(available, total) == status

    def test_all_configured_sources_healthy(self):
        """Registered and configured collectors plus a live cache is healthy."""
        registry = build_registry({
            SourceType.serp_organic: returning({}),
            SourceType.serp_news: returning({}),
        })
        health = asyncio.run(check_orchestration_health(registry, InMemoryCacheStore()))
        assert health.is_healthy
        assert health.status == "healthy"
        assert health.components == {"cache": True, "collectors": True}
        assert health.recommendations == []

    def test_unconfigured_sources_degrade(self):
        """Unconfigured collectors count as unavailable and get a recommendation."""
        registry = build_registry(
            {
                SourceType.serp_organic: returning({}),
                SourceType.serp_news: returning({}),
                SourceType.brightdata: returning({}),
            },
            unconfigured=(SourceType.brightdata,),
        )
        health = asyncio.run(check_orchestration_health(registry, InMemoryCacheStore()))
        assert health.status == "degraded"
        assert not health.is_healthy
        assert any("unavailable" in r for r in health.recommendations)

    def test_unknown_and_unregistered_sources(self):
        """Explicit targets that are unknown or unregistered are unavailable."""
        registry = build_registry({SourceType.serp_organic: returning({})})
        health = asyncio.run(check_orchestration_health(
            registry, InMemoryCacheStore(), sources=["serp_organic", "hunter", "carrier_pigeon"]
        ))
        by_source = {s.source: s for s in health.sources}
        assert by_source["serp_organic"].available
        assert not by_source["hunter"].available
        assert by_source["carrier_pigeon"].error_message == "unknown source"
        assert health.status == "unhealthy"

    def test_cache_down_reported(self):
        """A failing cache is reported in components and recommendations."""
        registry = build_registry({SourceType.serp_organic: returning({})})
        health = asyncio.run(check_orchestration_health(registry, FailingCacheStore()))
        assert health.components["cache"] is False
        assert any("Cache store is unreachable" in r for r in health.recommendations)
