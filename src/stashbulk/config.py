"""Configuration management for stashbulk."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_QUEUE_BASE_DELAY,
    DEFAULT_QUEUE_DELAY_CAP,
    DEFAULT_QUEUE_RETRY_COUNT,
    DEFAULT_REQUEST_RETRY_ATTEMPTS,
    DEFAULT_REQUEST_RETRY_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TASK_TIMEOUT,
)


def _require_positive(section: str, name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{section}.{name} must be positive, got {value}")


def _require_non_negative(section: str, name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{section}.{name} must not be negative, got {value}")


@dataclass
class StashConfig:
    """Stash server connection and request-level retry configuration."""

    base_url: str
    api_key: str | None = None
    timeout: float = DEFAULT_REQUEST_TIMEOUT  # Wall-clock seconds per request
    retry_attempts: int = DEFAULT_REQUEST_RETRY_ATTEMPTS  # Retries after the first attempt
    retry_delay: float = DEFAULT_REQUEST_RETRY_DELAY  # Backoff base in seconds
    retry_delay_cap: float | None = None  # Uncapped when None
    verify_ssl: bool = True
    max_connections: int = 10
    max_keepalive: int = 5

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("stash.base_url must not be empty")
        _require_positive("stash", "timeout", self.timeout)
        _require_non_negative("stash", "retry_attempts", self.retry_attempts)
        _require_non_negative("stash", "retry_delay", self.retry_delay)
        if self.retry_delay_cap is not None:
            _require_non_negative("stash", "retry_delay_cap", self.retry_delay_cap)

    @property
    def graphql_url(self) -> str:
        """Full URL of the GraphQL endpoint."""
        return f"{self.base_url.rstrip('/')}/graphql"


@dataclass
class QueueConfig:
    """Task queue scheduling and chunk-level retry configuration."""

    concurrency: int = DEFAULT_CONCURRENCY
    retry_count: int = DEFAULT_QUEUE_RETRY_COUNT
    task_timeout: float = DEFAULT_TASK_TIMEOUT  # Seconds, independent of request timeout
    base_delay: float = DEFAULT_QUEUE_BASE_DELAY
    delay_cap: float = DEFAULT_QUEUE_DELAY_CAP
    cancel_on_timeout: bool = True  # False keeps timed-out calls running detached

    def __post_init__(self) -> None:
        _require_positive("queue", "concurrency", self.concurrency)
        _require_non_negative("queue", "retry_count", self.retry_count)
        _require_positive("queue", "task_timeout", self.task_timeout)
        _require_non_negative("queue", "base_delay", self.base_delay)
        _require_non_negative("queue", "delay_cap", self.delay_cap)


@dataclass
class BulkConfig:
    """Bulk edit partitioning configuration."""

    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        _require_positive("bulk", "batch_size", self.batch_size)


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: Path | None = None


@dataclass
class BulkToolConfig:
    """
    Complete configuration for stashbulk.

    This combines all configuration sections.
    """

    stash: StashConfig | None = None
    queue: QueueConfig = field(default_factory=QueueConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, config_path: Path) -> "BulkToolConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to YAML config file

        Returns:
            BulkToolConfig instance
        """
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(
                f"Invalid configuration file structure in {config_path}: "
                f"expected dictionary, got {type(data).__name__}"
            )

        stash_data = data.get("stash")
        stash = StashConfig(**stash_data) if stash_data else None

        queue = QueueConfig(**(data.get("queue") or {}))
        bulk = BulkConfig(**(data.get("bulk") or {}))

        logging_data = dict(data.get("logging") or {})
        if logging_data.get("file"):
            logging_data["file"] = Path(logging_data["file"])
        logging = LoggingConfig(**logging_data)

        return cls(stash=stash, queue=queue, bulk=bulk, logging=logging)

    def to_file(self, config_path: Path) -> None:
        """
        Save configuration to YAML file.

        Args:
            config_path: Path to save config file
        """
        data = {
            "stash": self.stash.__dict__ if self.stash else None,
            "queue": self.queue.__dict__,
            "bulk": self.bulk.__dict__,
            "logging": {
                k: str(v) if isinstance(v, Path) else v
                for k, v in self.logging.__dict__.items()
                if v is not None
            },
        }

        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_env(cls) -> "BulkToolConfig":
        """
        Create configuration from environment variables.

        Environment variables:
            STASH_URL: Stash base URL (e.g. http://localhost:9999)
            STASH_API_KEY: API key sent in the ApiKey header
            STASH_VERIFY_SSL: Set to 'false' to disable certificate checks
            STASH_TIMEOUT: Request timeout in seconds (default: 30)
            LOG_LEVEL: Logging level (default: INFO)
            LOG_FORMAT: json or console (default: json)

        Returns:
            BulkToolConfig instance
        """
        stash_config = None
        stash_url = os.environ.get("STASH_URL")
        if stash_url:
            verify_ssl_str = os.environ.get("STASH_VERIFY_SSL", "true").lower()
            stash_config = StashConfig(
                base_url=stash_url,
                api_key=os.environ.get("STASH_API_KEY") or None,
                timeout=float(os.environ.get("STASH_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)),
                verify_ssl=verify_ssl_str not in ("false", "0", "no", "off"),
            )

        logging_config = LoggingConfig(
            level=os.environ.get("LOG_LEVEL", "INFO"),
            format=os.environ.get("LOG_FORMAT", "json"),
        )

        return cls(stash=stash_config, logging=logging_config)


def load_config(config_file: Path | None = None) -> BulkToolConfig:
    """
    Load configuration from file or environment variables.

    Args:
        config_file: Optional path to YAML config file

    Returns:
        BulkToolConfig instance

    Raises:
        FileNotFoundError: If config_file is specified but doesn't exist
    """
    if config_file:
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file}")
        return BulkToolConfig.from_file(config_file)
    return BulkToolConfig.from_env()
