"""Configuration loading for statesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 5000
    environment: str = "development"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    max_body_bytes: int = 5 * 1024 * 1024


@dataclass
class StorageConfig:
    """Where the state document and static assets live."""

    data_dir: str = "./data"
    state_file: str = "state.json"
    public_dir: str = "./public"

    @property
    def state_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.state_file


@dataclass
class StreamConfig:
    """Configuration for the push event stream."""

    keepalive_seconds: float = 15.0
    max_subscribers: int = 0  # 0 = unbounded
    queue_size: int = 0  # Per-subscriber pending documents, 0 = unbounded


@dataclass
class ClientConfig:
    """Configuration for the sync client used by the CLI."""

    base_url: str = "http://localhost:5000"
    timeout_seconds: float = 10.0
    retry_max_attempts: int = 3
    poll_interval_seconds: float = 5.0


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    client: ClientConfig = field(default_factory=ClientConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with STATESYNC_ prefix."""
    return os.environ.get(f"STATESYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if host := _get_env("HOST"):
        config.server.host = host
    if port := _get_env("PORT"):
        config.server.port = int(port)
    if environment := _get_env("ENVIRONMENT"):
        config.server.environment = environment

    # Storage overrides
    if data_dir := _get_env("DATA_DIR"):
        config.storage.data_dir = data_dir
    if state_file := _get_env("STATE_FILE"):
        config.storage.state_file = state_file
    if public_dir := _get_env("PUBLIC_DIR"):
        config.storage.public_dir = public_dir

    # Stream overrides
    if keepalive := _get_env("KEEPALIVE"):
        config.stream.keepalive_seconds = float(keepalive)
    if max_subscribers := _get_env("MAX_SUBSCRIBERS"):
        config.stream.max_subscribers = int(max_subscribers)

    # Client overrides
    if base_url := _get_env("BASE_URL"):
        config.client.base_url = base_url

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "server" in data:
                server_data = data["server"]
                config.server = ServerConfig(
                    host=server_data.get("host", config.server.host),
                    port=server_data.get("port", config.server.port),
                    environment=server_data.get(
                        "environment", config.server.environment
                    ),
                    cors_origins=server_data.get(
                        "cors_origins", config.server.cors_origins
                    ),
                    max_body_bytes=server_data.get(
                        "max_body_bytes", config.server.max_body_bytes
                    ),
                )

            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    data_dir=storage_data.get("data_dir", config.storage.data_dir),
                    state_file=storage_data.get(
                        "state_file", config.storage.state_file
                    ),
                    public_dir=storage_data.get(
                        "public_dir", config.storage.public_dir
                    ),
                )

            if "stream" in data:
                stream_data = data["stream"]
                config.stream = StreamConfig(
                    keepalive_seconds=stream_data.get(
                        "keepalive_seconds", config.stream.keepalive_seconds
                    ),
                    max_subscribers=stream_data.get(
                        "max_subscribers", config.stream.max_subscribers
                    ),
                    queue_size=stream_data.get("queue_size", config.stream.queue_size),
                )

            if "client" in data:
                client_data = data["client"]
                config.client = ClientConfig(
                    base_url=client_data.get("base_url", config.client.base_url),
                    timeout_seconds=client_data.get(
                        "timeout_seconds", config.client.timeout_seconds
                    ),
                    retry_max_attempts=client_data.get(
                        "retry_max_attempts", config.client.retry_max_attempts
                    ),
                    poll_interval_seconds=client_data.get(
                        "poll_interval_seconds", config.client.poll_interval_seconds
                    ),
                )

    return _apply_env_overrides(config)
