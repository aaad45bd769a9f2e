"""
Tests for hinge.core.errors, hinge.core.config and hinge.core.logging.
"""

import builtins

import pytest
import structlog

from hinge.core.config import CoreSettings, clear_settings_cache, get_settings, load_settings
from hinge.core.errors import (
    ConfigError,
    DependencyError,
    ErrorCategory,
    ExecutionError,
    HingeError,
    InvalidTransitionError,
    NotFoundError,
    TimeoutError,
    ValidationError,
    categorize_error,
    error_message,
    is_retryable,
)
from hinge.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestErrorHierarchy:
    """Test error types, categories and context."""

    def test_categories(self):
        """Each subclass carries its default category."""
        assert ValidationError("x").category == ErrorCategory.VALIDATION
        assert NotFoundError("plugin", "p").category == ErrorCategory.NOT_FOUND
        assert DependencyError("x").category == ErrorCategory.DEPENDENCY
        assert ExecutionError("x").category == ErrorCategory.EXECUTION
        assert ConfigError("x").category == ErrorCategory.CONFIG
        assert TimeoutError(timeout_ms=5).category == ErrorCategory.TIMEOUT

    def test_timeout_is_builtin_timeout(self):
        """TimeoutError is catchable as the builtin and retryable."""
        err = TimeoutError(timeout_ms=250, operation="fetch")
        assert isinstance(err, builtins.TimeoutError)
        assert isinstance(err, HingeError)
        assert err.message == 'Operation "fetch" timed out after 250ms'
        assert is_retryable(err)

    def test_not_found_message(self):
        """NotFoundError names the kind and key."""
        err = NotFoundError("flow", "abc")
        assert err.message == "Flow not found: abc"
        assert (err.kind, err.key) == ("flow", "abc")

    def test_invalid_transition_lists_targets(self):
        """The message names the current state and the legal targets."""
        err = InvalidTransitionError("running", "initializing", ["ready", "shutdown"])
        assert "running -> initializing" in err.message
        assert "ready, shutdown" in err.message

    def test_with_context_and_to_dict(self):
        """Known context fields are set directly, others land in metadata."""
        err = ExecutionError("failed").with_context(plugin="wallet", attempt=2)
        data = err.to_dict()
        assert data["error_type"] == "ExecutionError"
        assert data["context"] == {"plugin": "wallet", "attempt": 2}

    def test_validation_error_details(self):
        """ValidationError serializes field and errors."""
        err = ValidationError("bad", field="name", errors=["a", "b"])
        data = err.to_dict()
        assert data["field"] == "name"
        assert data["errors"] == ["a", "b"]

    def test_dependency_error_fields(self):
        """DependencyError keeps missing and cycle lists."""
        err = DependencyError("cycle", plugin="a", cycle=["a", "b", "a"])
        assert err.cycle == ["a", "b", "a"]
        assert err.missing == []
        assert err.context.plugin == "a"

    def test_categorize_and_message_for_plain_exceptions(self):
        """Plain exceptions are categorized by type."""
        assert categorize_error(ValueError("x")) == ErrorCategory.VALIDATION
        assert categorize_error(KeyError("x")) == ErrorCategory.NOT_FOUND
        assert categorize_error(RuntimeError("x")) == ErrorCategory.UNKNOWN
        assert error_message(RuntimeError()) == "RuntimeError"
        assert not is_retryable(ValueError("x"))


class TestCoreSettings:
    """Test settings loading."""

    def test_defaults(self, monkeypatch):
        """Defaults apply when nothing is configured."""
        monkeypatch.delenv("HINGE_MAX_CONCURRENT_TASKS", raising=False)
        settings = CoreSettings(_env_file=None)
        assert settings.max_concurrent_tasks == 10
        assert settings.task_timeout_ms is None
        assert settings.cache_default_ttl_ms == 30_000
        assert settings.plugins == []

    def test_env_prefix(self, monkeypatch):
        """HINGE_* variables are read, JSON for complex values."""
        monkeypatch.setenv("HINGE_MAX_CONCURRENT_TASKS", "3")
        monkeypatch.setenv("HINGE_PLUGINS", '["wallet", "swap"]')
        settings = CoreSettings(_env_file=None)
        assert settings.max_concurrent_tasks == 3
        assert settings.plugins == ["wallet", "swap"]

    def test_log_level_normalized(self):
        """Log levels are upper-cased and WARN becomes WARNING."""
        assert load_settings(log_level="warn").log_level == "WARNING"

    def test_debug_overrides_log_level(self):
        """debug=True forces DEBUG."""
        assert load_settings(debug=True, log_level="ERROR").effective_log_level == "DEBUG"

    def test_invalid_config_raises_config_error(self):
        """Validation failures surface as ConfigError."""
        with pytest.raises(ConfigError):
            load_settings(max_concurrent_tasks=0)
        with pytest.raises(ConfigError):
            load_settings(log_level="LOUD")

    def test_get_settings_is_cached(self):
        """get_settings returns the same object until the cache is cleared."""
        clear_settings_cache()
        first = get_settings()
        assert get_settings() is first
        clear_settings_cache()
        assert get_settings() is not first
        clear_settings_cache()


class TestLogging:
    """Test structlog configuration."""

    def test_configure_and_log(self, capsys):
        """JSON logs carry the service name and the event."""
        configure_logging(level="INFO", json_format=True, service="hinge-test")
        get_logger("hinge.test").info("test.event", answer=42)
        out = capsys.readouterr().out
        assert '"event": "test.event"' in out
        assert '"service": "hinge-test"' in out
        assert '"answer": 42' in out
        configure_logging(level="INFO", json_format=True)

    def test_log_context_binds_and_resets(self):
        """LogContext binds contextvars for its scope only."""
        clear_context()
        with LogContext(execution_id="abc"):
            assert structlog.contextvars.get_contextvars()["execution_id"] == "abc"
        assert "execution_id" not in structlog.contextvars.get_contextvars()

    def test_bind_unbind_clear(self):
        """Bound keys stay until unbound or cleared."""
        clear_context()
        bind_context(flow_id="f1", node_id="n1")
        unbind_context("node_id")
        assert structlog.contextvars.get_contextvars() == {"flow_id": "f1"}
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}
