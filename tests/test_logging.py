"""
Tests for the logging module.
"""

import structlog

from brokerage_graph.logging import (
    PipelineTimer,
    add_context_info,
    configure_logging,
    get_logger,
    get_trace_id,
    get_user_id,
    get_user_role,
    logging_context,
)


class TestLoggingContext:
    """Test logging context management."""

    def test_logging_context_sets_values(self):
        with logging_context(trace_id="trace_123", user_id="agent_a", user_role="agent"):
            assert get_trace_id() == "trace_123"
            assert get_user_id() == "agent_a"
            assert get_user_role() == "agent"

    def test_logging_context_restores_values(self):
        with logging_context(user_id="outer"):
            assert get_user_id() == "outer"
            with logging_context(user_id="inner"):
                assert get_user_id() == "inner"
            assert get_user_id() == "outer"

        assert get_user_id() is None

    def test_logging_context_partial_values(self):
        with logging_context(user_role="admin"):
            assert get_user_role() == "admin"
            assert get_trace_id() is None
            assert get_user_id() is None

    def test_context_processor_adds_values(self):
        with logging_context(trace_id="t1", user_id="agent_a"):
            event = add_context_info(None, "info", {"event": "x"})

        assert event["trace_id"] == "t1"
        assert event["user_id"] == "agent_a"
        assert "user_role" not in event

    def test_context_processor_keeps_explicit_values(self):
        with logging_context(user_id="agent_a"):
            event = add_context_info(None, "info", {"event": "x", "user_id": "explicit"})

        assert event["user_id"] == "explicit"


class TestConfigureLogging:
    """Loggers work in both output modes."""

    def test_json_mode_logs_without_error(self, capsys):
        configure_logging(json_output=True, log_level="INFO")
        try:
            get_logger("test").info("test.event", value=1)
            out = capsys.readouterr().out
            assert '"event": "test.event"' in out
        finally:
            configure_logging(json_output=False)

    def test_level_filters_debug(self, capsys):
        configure_logging(json_output=True, log_level="WARNING")
        try:
            structlog.get_logger("test").info("hidden.event")
            assert "hidden.event" not in capsys.readouterr().out
        finally:
            configure_logging(json_output=False)


class TestPipelineTimer:
    """Test pipeline timing functionality."""

    def test_timer_records_stages(self):
        timer = PipelineTimer()

        with timer.stage("load"):
            pass
        with timer.stage("score"):
            pass

        assert set(timer.stages) == {"load", "score"}
        assert all(v >= 0 for v in timer.stages.values())

    def test_stage_recorded_when_body_raises(self):
        timer = PipelineTimer()
        try:
            with timer.stage("failing"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert "failing" in timer.stages

    def test_timer_summary(self):
        timer = PipelineTimer()
        timer.record("merge", 12.345)

        summary = timer.summary()

        assert summary["stages"]["merge"] == 12.35
        assert summary["total_ms"] >= 0
