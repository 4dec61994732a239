"""
Unit Tests for the logging subsystem
====================================

Test Coverage
-------------
- LogContext binds and restores context (sync and async)
- ContextFilter fills records from the bound context
- JSONFormatter output fields
- Logging health snapshot
"""

import json
import logging

import pytest

from questlog.core.logging.logger import (
    ContextFilter,
    JSONFormatter,
    LogContext,
    clear_log_context,
    get_log_context,
    get_logging_health,
    set_log_context,
    setup_logging,
)


@pytest.fixture(autouse=True)
def fresh_context():
    clear_log_context()
    yield
    clear_log_context()


def make_record(**extra):
    record = logging.LogRecord(
        name="questlog.modules.xp.grant_service",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Granted %d XP",
        args=(25,),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestLogContext:
    def test_binds_and_restores(self):
        with LogContext(user_id="u1", operation="xp.grant_batch", source_type="journal"):
            context = get_log_context()
            assert context["user_id"] == "u1"
            assert context["operation"] == "xp.grant_batch"
            assert context["source_type"] == "journal"
            assert context["correlation_id"] == context["request_id"]

        assert get_log_context() == {}

    async def test_async_nesting_restores_outer(self):
        async with LogContext(user_id="u1", operation="outer"):
            async with LogContext(user_id="u1", operation="inner", source_id="j1"):
                assert get_log_context()["source_id"] == "j1"
            assert get_log_context()["operation"] == "outer"

    def test_explicit_correlation_id(self):
        with LogContext(correlation_id="abc123"):
            assert get_log_context()["correlation_id"] == "abc123"

    def test_set_log_context_merges(self):
        set_log_context(user_id="u1")
        set_log_context(operation="level_up", request_id="req-1")

        context = get_log_context()
        assert context["user_id"] == "u1"
        assert context["operation"] == "level_up"
        assert context["correlation_id"] == "req-1"


@pytest.mark.unit
class TestContextFilter:
    def test_fills_record_from_context(self):
        record = make_record()

        with LogContext(user_id="u1", source_type="task", source_id="t1"):
            ContextFilter().filter(record)

        assert record.user_id == "u1"
        assert record.source_type == "task"
        assert record.source_id == "t1"
        assert record.component == "questlog"

    def test_explicit_extra_wins(self):
        record = make_record(user_id="explicit")

        with LogContext(user_id="ambient"):
            ContextFilter().filter(record)

        assert record.user_id == "explicit"

    def test_defaults_without_context(self):
        record = make_record()

        ContextFilter().filter(record)

        assert record.source_id == "N/A"
        assert record.correlation_id == "N/A"


@pytest.mark.unit
class TestJSONFormatter:
    def test_context_and_extra_fields(self):
        record = make_record(grant_count=3)
        with LogContext(user_id="u1", operation="journal.finalize_entry"):
            ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Granted 25 XP"
        assert data["level"] == "INFO"
        assert data["user_id"] == "u1"
        assert data["operation"] == "journal.finalize_entry"
        assert data["extra"] == {"grant_count": 3}
        assert "source_id" not in data


@pytest.mark.unit
class TestLoggingHealth:
    def test_health_after_setup(self):
        setup_logging()

        health = get_logging_health()

        assert health.initialized is True
        assert health.queue_max_size > 0
        assert health.records_dropped >= 0
