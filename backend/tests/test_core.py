"""
Tests for core/ - Logging, Database Engine and Celery Wiring

Tests the JSON log formatter and level handling, the SQLite engine
setup shared by the app and the test fixtures, and that the API and
the worker agree on Celery task names and queues.
"""
import json
import logging
import sys

import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool

from salesintel.core import logging as core_logging
from salesintel.core.celery_app import (
    CLEANUP_RUNS_TASK,
    COLLECTION_QUEUE,
    RUN_COLLECTION_TASK,
    celery_app,
)
from salesintel.core.db import build_engine, session_factory
from salesintel.core.logging import JsonFormatter, configure_logging, resolve_level
from salesintel.services import retention, tasks


def make_record(msg="Collected '%s'", args=("serp_organic",), **extra):
    record = logging.LogRecord(
        name="salesintel.services.engine",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    record.created = 1_700_000_000.25
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def root_logger(monkeypatch):
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    monkeypatch.setattr(core_logging, "_configured", False)
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# Logging Tests
# ---------------------------------------------------------------------------

class TestJsonFormatter:
    """Tests for the structured log line."""

    def test_collection_fields_lifted(self):
        """extra= fields the collection code uses land on the JSON object."""
        record = make_record(company_name="Acme", source="serp_organic", run_id="r-1")

        line = json.loads(JsonFormatter().format(record))

        assert line["message"] == "Collected 'serp_organic'"
        assert line["level"] == "INFO"
        assert line["logger"] == "salesintel.services.engine"
        assert line["service"] == "salesintel"
        assert line["company_name"] == "Acme"
        assert line["source"] == "serp_organic"
        assert line["run_id"] == "r-1"
        assert "step" not in line

    def test_timestamp_is_record_creation_time(self):
        line = json.loads(JsonFormatter().format(make_record()))
        assert line["timestamp"] == "2023-11-14T22:13:20.250Z"

    def test_unknown_extras_ignored(self):
        line = json.loads(JsonFormatter().format(make_record(api_key="secret")))
        assert "api_key" not in line

    def test_exception_rendered(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(msg="failed", args=())
            record.exc_info = sys.exc_info()

        line = json.loads(JsonFormatter().format(record))

        assert "ValueError: boom" in line["exc_info"]


class TestConfigureLogging:
    """Tests for level resolution and one-time setup."""

    @pytest.mark.parametrize("level,expected", [
        (None, logging.INFO),
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        (logging.ERROR, logging.ERROR),
        ("chatty", logging.INFO),
    ])
    def test_resolve_level(self, level, expected):
        assert resolve_level(level) == expected

    def test_second_call_is_a_no_op(self, root_logger):
        """The worker and the API both call this; only the first call counts."""
        configure_logging("debug")
        handlers = list(root_logger.handlers)

        configure_logging("error")

        assert root_logger.level == logging.DEBUG
        assert root_logger.handlers == handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JsonFormatter)


# ---------------------------------------------------------------------------
# Database Engine Tests
# ---------------------------------------------------------------------------

class TestBuildEngine:
    """Tests for the SQLite engine setup."""

    def test_in_memory_shares_one_connection(self):
        """Tables created through one session are visible to the next."""
        engine = build_engine("sqlite://")
        assert isinstance(engine.pool, StaticPool)

        factory = session_factory(engine)
        first = factory()
        first.execute(text("CREATE TABLE runs (id INTEGER PRIMARY KEY)"))
        first.execute(text("INSERT INTO runs (id) VALUES (1)"))
        first.commit()
        first.close()

        second = factory()
        try:
            assert second.execute(text("SELECT COUNT(*) FROM runs")).scalar() == 1
        finally:
            second.close()

    def test_file_database_uses_regular_pool(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'history.db'}")
        assert not isinstance(engine.pool, StaticPool)


# ---------------------------------------------------------------------------
# Celery Wiring Tests
# ---------------------------------------------------------------------------

class TestCeleryWiring:
    """Tests that producers and workers agree on names and queues."""

    def test_task_names(self):
        assert tasks.run_collection.name == RUN_COLLECTION_TASK
        assert retention.cleanup_expired.name == CLEANUP_RUNS_TASK

    def test_collection_routed_to_its_queue(self):
        assert celery_app.conf.task_routes[RUN_COLLECTION_TASK] == {"queue": COLLECTION_QUEUE}

    def test_cleanup_scheduled_daily(self):
        entry = celery_app.conf.beat_schedule["cleanup-expired-collection-runs"]
        assert entry["task"] == CLEANUP_RUNS_TASK
        assert entry["schedule"].hour == {3}
        assert entry["schedule"].minute == {0}
