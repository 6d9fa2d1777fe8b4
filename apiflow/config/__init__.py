"""Configuration management using environment variables."""
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from ..utils.retry import RetryConfig

logger = logging.getLogger(__name__)

EXECUTION_MODES = ("sequential", "parallel")
API_PROTOCOLS = ("graphql", "rest")


def _parse_bool(value: str | bool | None) -> bool:
    """Parse boolean value from various formats."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on", "enabled")
    return bool(value)


def _parse_list(value: str | List[str] | None, delimiter: str = ",") -> List[str]:
    """Parse list value from string or return as-is if already a list."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [item.strip() for item in value.split(delimiter) if item.strip()]
    return [] if value is None else [value]


def _parse_headers(value: str | None) -> Dict[str, str]:
    """Parse ``Name=value,Name=value`` into a header mapping.

    Raises:
        ValueError: If an item has no ``=``
    """
    headers: Dict[str, str] = {}
    for item in _parse_list(value):
        name, sep, header_value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid header '{item}' in API_HEADERS. Expected Name=value")
        headers[name.strip()] = header_value.strip()
    return headers


def _getenv(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.getenv(key, default)


def _getenv_int(key: str, default: int) -> int:
    """Get integer environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Parsed integer value

    Raises:
        ValueError: If value cannot be parsed as integer
    """
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(
            f"Invalid integer value for {key}='{value}'. "
            f"Expected integer, got: {value}"
        ) from e


def _getenv_float(key: str, default: float) -> float:
    """Get float environment variable with validation.

    Raises:
        ValueError: If value cannot be parsed as float
    """
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(
            f"Invalid float value for {key}='{value}'. "
            f"Expected float, got: {value}"
        ) from e


def load_environment() -> Optional[Path]:
    """Load the first .env file found in the current or parent directory, or home.

    Existing environment variables always win over .env values.

    Returns:
        Path of the loaded file, or None
    """
    for env_path in (Path(".env"), Path("../.env"), Path.home() / ".env"):
        if env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded environment from {env_path}")
            return env_path
    return None


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # ========== Logging ==========
    log_level: str = field(default_factory=lambda: _getenv("LOG_LEVEL", "INFO").upper())
    log_format: str = field(
        default_factory=lambda: _getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    log_file: Optional[str] = field(default_factory=lambda: _getenv("LOG_FILE") or None)
    log_to_console: bool = field(default_factory=lambda: _parse_bool(_getenv("LOG_TO_CONSOLE", "true")))

    # ========== API Settings ==========
    api_endpoint: Optional[str] = field(default_factory=lambda: _getenv("API_ENDPOINT") or None)
    api_protocol: str = field(default_factory=lambda: _getenv("API_PROTOCOL", "graphql").lower())
    api_headers: Dict[str, str] = field(default_factory=lambda: _parse_headers(_getenv("API_HEADERS")))
    request_timeout: float = field(default_factory=lambda: _getenv_float("REQUEST_TIMEOUT", 30.0))

    # ========== Retry Settings ==========
    max_retries: int = field(default_factory=lambda: _getenv_int("MAX_API_RETRIES", 3))
    retry_delay: float = field(default_factory=lambda: _getenv_float("API_RETRY_DELAY", 1.0))
    max_retry_delay: float = field(default_factory=lambda: _getenv_float("MAX_RETRY_DELAY", 60.0))
    retry_exponential_base: float = field(default_factory=lambda: _getenv_float("RETRY_EXPONENTIAL_BASE", 2.0))
    retry_jitter: bool = field(default_factory=lambda: _parse_bool(_getenv("RETRY_JITTER_ENABLED", "true")))

    # ========== Execution ==========
    execution_mode: str = field(default_factory=lambda: _getenv("EXECUTION_MODE", "sequential").lower())
    max_workers: int = field(default_factory=lambda: _getenv_int("MAX_WORKERS", 4))

    # ========== Run Store ==========
    persist_runs: bool = field(default_factory=lambda: _parse_bool(_getenv("PERSIST_RUNS", "false")))
    state_db_path: Path = field(
        default_factory=lambda: Path(_getenv("STATE_DB_PATH", str(Path.home() / ".apiflow" / "runs.db")))
    )

    def __post_init__(self):
        """Validate enumerated and bounded settings."""
        if self.api_protocol not in API_PROTOCOLS:
            raise ValueError(
                f"Invalid API_PROTOCOL '{self.api_protocol}'. Expected one of: {', '.join(API_PROTOCOLS)}"
            )
        if self.execution_mode not in EXECUTION_MODES:
            raise ValueError(
                f"Invalid EXECUTION_MODE '{self.execution_mode}'. Expected one of: {', '.join(EXECUTION_MODES)}"
            )
        if self.max_workers < 1:
            raise ValueError(f"MAX_WORKERS must be at least 1, got: {self.max_workers}")
        if self.max_retries < 0:
            raise ValueError(f"MAX_API_RETRIES must be non-negative, got: {self.max_retries}")
        if self.request_timeout <= 0:
            raise ValueError(f"REQUEST_TIMEOUT must be positive, got: {self.request_timeout}")

    def __repr__(self) -> str:
        """Return repr with redacted header values for security."""
        items = []
        for field_name in self.__dataclass_fields__:
            value = getattr(self, field_name)
            if field_name == "api_headers" and value:
                redacted = {name: "***REDACTED***" for name in value}
                items.append(f"{field_name}={redacted!r}")
            else:
                items.append(f"{field_name}={value!r}")
        return f"Config({', '.join(items)})"

    @property
    def parallel(self) -> bool:
        return self.execution_mode == "parallel"

    def retry_config(self) -> RetryConfig:
        """Build the invoker retry policy.

        ``max_retries`` counts retries, so the attempt budget is one more.
        """
        return RetryConfig(
            max_attempts=min(self.max_retries + 1, 10),
            base_delay=self.retry_delay,
            max_delay=max(self.max_retry_delay, self.retry_delay),
            exponential_base=self.retry_exponential_base,
            jitter=self.retry_jitter,
        )


# Singleton instance with thread-safe initialization
_config_instance: Optional[Config] = None
_config_lock = threading.Lock()


def get_config() -> Config:
    """Get global config instance (singleton pattern, thread-safe)."""
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            # Double-check pattern to prevent race conditions
            if _config_instance is None:
                load_environment()
                _config_instance = Config()
    return _config_instance


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config_instance
    with _config_lock:
        _config_instance = None


__all__ = ["Config", "get_config", "load_environment", "reset_config"]
