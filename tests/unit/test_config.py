"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest

from apiflow.config import Config, get_config, load_environment, reset_config

ENV_VARS = (
    "LOG_LEVEL",
    "LOG_FILE",
    "LOG_TO_CONSOLE",
    "API_ENDPOINT",
    "API_PROTOCOL",
    "API_HEADERS",
    "REQUEST_TIMEOUT",
    "MAX_API_RETRIES",
    "API_RETRY_DELAY",
    "MAX_RETRY_DELAY",
    "RETRY_JITTER_ENABLED",
    "EXECUTION_MODE",
    "MAX_WORKERS",
    "PERSIST_RUNS",
    "STATE_DB_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        # setenv first so values written by load_dotenv are undone at teardown
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    reset_config()
    yield
    reset_config()


class TestDefaults:
    def test_defaults(self):
        config = Config()

        assert config.log_level == "INFO"
        assert config.api_endpoint is None
        assert config.api_protocol == "graphql"
        assert config.api_headers == {}
        assert config.request_timeout == 30.0
        assert config.max_retries == 3
        assert config.execution_mode == "sequential"
        assert config.max_workers == 4
        assert config.persist_runs is False
        assert not config.parallel


class TestEnvironmentOverrides:
    """Test values read from the environment."""

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("API_ENDPOINT", "https://api.example.com")
        monkeypatch.setenv("API_PROTOCOL", "REST")
        monkeypatch.setenv("API_HEADERS", "Authorization=Bearer abc, X-Shop=demo")
        monkeypatch.setenv("EXECUTION_MODE", "parallel")
        monkeypatch.setenv("MAX_WORKERS", "8")
        monkeypatch.setenv("PERSIST_RUNS", "yes")
        monkeypatch.setenv("STATE_DB_PATH", "/tmp/apiflow/runs.db")

        config = Config()

        assert config.api_endpoint == "https://api.example.com"
        assert config.api_protocol == "rest"
        assert config.api_headers == {"Authorization": "Bearer abc", "X-Shop": "demo"}
        assert config.parallel
        assert config.max_workers == 8
        assert config.persist_runs is True
        assert config.state_db_path == Path("/tmp/apiflow/runs.db")

    @pytest.mark.parametrize(
        "name, value",
        [
            ("MAX_WORKERS", "many"),
            ("REQUEST_TIMEOUT", "soon"),
            ("MAX_WORKERS", "0"),
            ("MAX_API_RETRIES", "-1"),
            ("REQUEST_TIMEOUT", "0"),
            ("API_PROTOCOL", "soap"),
            ("EXECUTION_MODE", "eventually"),
            ("API_HEADERS", "missing-equals"),
        ],
    )
    def test_invalid_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError):
            Config()

    def test_repr_redacts_headers(self, monkeypatch):
        monkeypatch.setenv("API_HEADERS", "Authorization=Bearer secret")
        text = repr(Config())
        assert "secret" not in text
        assert "***REDACTED***" in text


class TestRetryConfig:
    def test_attempts_are_retries_plus_one(self, monkeypatch):
        monkeypatch.setenv("MAX_API_RETRIES", "2")
        monkeypatch.setenv("API_RETRY_DELAY", "0.5")
        monkeypatch.setenv("RETRY_JITTER_ENABLED", "false")

        retry = Config().retry_config()

        assert retry.max_attempts == 3
        assert retry.base_delay == 0.5
        assert retry.jitter is False

    def test_attempts_are_capped(self, monkeypatch):
        monkeypatch.setenv("MAX_API_RETRIES", "25")
        assert Config().retry_config().max_attempts == 10


class TestSingleton:
    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_reset_rereads_environment(self, monkeypatch):
        first = get_config()
        monkeypatch.setenv("MAX_WORKERS", "2")
        reset_config()
        second = get_config()

        assert second is not first
        assert second.max_workers == 2


class TestDotenv:
    def test_env_file_is_loaded(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("API_ENDPOINT=https://from-dotenv.example.com\n", encoding="utf-8")

        assert load_environment() == Path(".env")
        assert get_config().api_endpoint == "https://from-dotenv.example.com"

    def test_process_environment_wins(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("MAX_WORKERS=9\n", encoding="utf-8")
        monkeypatch.setenv("MAX_WORKERS", "3")

        assert get_config().max_workers == 3
