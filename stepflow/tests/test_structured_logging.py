"""
Tests for structured logging functionality
"""

import json
import logging

from stepflow.logging.config import (
    configure_logging,
    generate_request_id,
    generate_session_id,
    LogContext,
    get_logger,
    log_circuit_breaker,
    log_plan_execution,
    log_state_operation,
    log_step_execution
)


class TestStructuredLogging:
    """Test structured logging functionality"""

    def _get_log_output(self, capsys):
        """Get log output from stderr"""
        captured = capsys.readouterr()
        return captured.err.strip()

    def test_json_format(self, capsys):
        """Test JSON log format"""
        configure_logging(log_level="INFO", json_format=True)

        get_logger("test").info("Test message", key="value")

        log_data = json.loads(self._get_log_output(capsys))
        assert log_data["event"] == "Test message"
        assert log_data["key"] == "value"
        assert log_data["service"] == "stepflow"
        assert log_data["version"] == "0.1.0"
        assert log_data["level"] == "info"
        assert "timestamp" in log_data

    def test_step_execution_logging(self, capsys):
        """Test step outcome logging"""
        configure_logging(log_level="INFO", json_format=True)

        log_step_execution(
            step_id="step_0001",
            kind="tool_call",
            target="web_search",
            success=False,
            duration_ms=12,
            session_id="session_1",
            attempts=3,
            error="service down"
        )

        log_data = json.loads(self._get_log_output(capsys))
        assert log_data["event"] == "Step execution"
        assert log_data["level"] == "error"
        assert log_data["step_id"] == "step_0001"
        assert log_data["attempts"] == 3
        assert log_data["error"] == "service down"

    def test_plan_execution_logging(self, capsys):
        """Failed and cancelled plans are logged as warnings"""
        configure_logging(log_level="INFO", json_format=True)

        log_plan_execution("plan_1", "cancelled", session_id="session_1")

        log_data = json.loads(self._get_log_output(capsys))
        assert log_data["event"] == "Plan execution"
        assert log_data["level"] == "warning"
        assert log_data["status"] == "cancelled"

    def test_circuit_breaker_logging(self, capsys):
        configure_logging(log_level="INFO", json_format=True)

        log_circuit_breaker("tool_call:search", "open", "opened", failure_count=5)

        log_data = json.loads(self._get_log_output(capsys))
        assert log_data["circuit"] == "tool_call:search"
        assert log_data["state"] == "open"
        assert log_data["failure_count"] == 5

    def test_state_operation_levels(self, capsys):
        """Successful state operations are debug, failures are errors"""
        configure_logging(log_level="INFO", json_format=True)

        log_state_operation("set", "session_1")
        assert self._get_log_output(capsys) == ""

        log_state_operation("set", "session_1", success=False, error="disk full")
        log_data = json.loads(self._get_log_output(capsys))
        assert log_data["level"] == "error"
        assert log_data["error"] == "disk full"

    def test_log_level_filtering(self, capsys):
        configure_logging(log_level="WARNING", json_format=True)

        logger = get_logger("test")
        logger.info("hidden")
        logger.warning("shown")

        lines = self._get_log_output(capsys).splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["event"] == "shown"
        assert logging.getLogger().level == logging.WARNING

    def test_console_format(self, capsys):
        configure_logging(log_level="INFO", json_format=False)

        get_logger("test").info("Console message")

        assert "Console message" in self._get_log_output(capsys)

    def test_id_generation(self):
        assert generate_request_id() != generate_request_id()
        assert generate_session_id().startswith("session_")

    def test_log_context_binds_fields(self, capsys):
        """Fields bound by LogContext appear on events until the block exits"""
        configure_logging(log_level="INFO", json_format=True)
        logger = get_logger("test")

        with LogContext(request_id="req-1", session_id=None):
            logger.info("inside")
        logger.info("outside")

        inside, outside = [json.loads(line) for line in self._get_log_output(capsys).splitlines()]
        assert inside["request_id"] == "req-1"
        assert "session_id" not in inside
        assert "request_id" not in outside
