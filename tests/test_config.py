"""Tests for configuration loading and logging setup."""

import json
import logging

import pytest
from pydantic import ValidationError

from salesflow.config import AppConfig, LogLevel, get_config, get_testing_config, reset_config, validate_config
from salesflow.core.logging import ExecutionContextFilter, StructuredFormatter, get_logger, logging_context


@pytest.fixture(autouse=True)
def clean_config():
    reset_config()
    yield
    reset_config()


class TestAppConfig:

    def test_defaults(self):
        config = AppConfig()
        assert not config.uses_database
        assert config.max_trigger_depth == 5
        policy = config.default_resilience_policy()
        assert policy.timeout_seconds == 30.0
        assert policy.max_attempts == 4

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SALESFLOW_DATABASE_URL", "sqlite:///:memory:")
        monkeypatch.setenv("SALESFLOW_MAX_RETRIES", "1")
        monkeypatch.setenv("SALESFLOW_RETRY_JITTER", "false")
        monkeypatch.setenv("SALESFLOW_LOG_LEVEL", "debug")

        config = get_config()

        assert config.uses_database and config.is_sqlite
        assert config.max_retries == 1
        assert config.retry_jitter is False
        assert config.log_level == LogLevel.DEBUG
        assert get_config() is config

    def test_rejects_unsupported_database(self):
        with pytest.raises(ValidationError):
            AppConfig(database_url="oracle://db")

    def test_rejects_invalid_values(self):
        with pytest.raises(ValidationError):
            AppConfig(max_concurrent_workflows=0)
        with pytest.raises(ValidationError):
            AppConfig(step_timeout=0)

    def test_validate_config_backoff_bounds(self):
        with pytest.raises(ValueError, match="max_retry_backoff"):
            validate_config(AppConfig(retry_backoff=10, max_retry_backoff=1))
        validate_config(get_testing_config())


class TestStructuredLogging:

    def test_context_fields_in_json_output(self):
        formatter = StructuredFormatter()
        context_filter = ExecutionContextFilter()
        logger = get_logger("salesflow.test")
        record = logger.makeRecord("salesflow.test", logging.INFO, __file__, 1, "step done", None, None)

        with logging_context(execution_id="exec-1", step_id="enrich"):
            assert context_filter.filter(record)
        payload = json.loads(formatter.format(record))

        assert payload["message"] == "step done"
        assert payload["execution_id"] == "exec-1"
        assert payload["step_id"] == "enrich"

    def test_logging_context_is_scoped(self):
        from salesflow.core.logging import _log_context

        with logging_context(execution_id="exec-1"):
            with logging_context(step_id="a"):
                assert _log_context.get() == {"execution_id": "exec-1", "step_id": "a"}
            assert _log_context.get() == {"execution_id": "exec-1"}
        assert _log_context.get() == {}
