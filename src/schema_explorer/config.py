"""Configuration management for Schema Explorer."""

import json
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# Set while Config.from_file builds a Config, so only the file contents are used.
_init_values_only: ContextVar[bool] = ContextVar("_init_values_only", default=False)


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format ('json' or 'console')")
    file: Optional[Path] = Field(default=None, description="Log file path")

class HTTPClientConfig(BaseModel):
    """Configuration for the shared aiohttp client used by the HTTP-based connectors."""
    request_timeout_seconds: float = Field(default=30.0, gt=0, description="Default total timeout for a single request.")
    connect_timeout_seconds: float = Field(default=10.0, gt=0, description="Timeout for establishing a connection.")
    connection_pool_total_limit: int = Field(default=100, ge=1, description="Total connection pool limit for aiohttp session.")
    connection_pool_per_host_limit: int = Field(default=30, ge=1, description="Per-host connection pool limit for aiohttp session.")
    connection_pool_dns_cache_ttl_seconds: int = Field(default=300, ge=0, description="DNS cache TTL in seconds for aiohttp session.")
    ssl_verify: bool = Field(default=True, description="Enable/disable SSL certificate verification.")
    max_redirects: int = Field(default=5, ge=0, description="Redirects followed when a request allows them.")

class StorageSettings(BaseModel):
    """Configuration for the schema storage backend."""
    type: Literal["memory", "file"] = Field(default="file", description="Storage backend to use.")
    base_directory: Path = Field(default=Path("./schemas"), description="Root directory of the file backend.")
    enable_backups: bool = Field(default=True, description="Write a backup copy before a stored schema is overwritten or deleted.")
    max_backups: int = Field(default=5, ge=0, description="Backups kept per backend; older ones are pruned by modification time.")
    max_schemas: int = Field(default=1000, ge=1, description="Ceiling enforced by the memory backend.")
    auto_cleanup: bool = Field(default=True, description="Run the periodic age-based sweep in the memory backend.")
    max_age_seconds: Optional[float] = Field(default=86400.0, gt=0, description="Age after which the memory backend evicts schemas. None disables age eviction.")
    cleanup_interval_seconds: float = Field(default=3600.0, gt=0, description="Interval of the memory backend's background sweep.")

class ExplorerSettings(BaseModel):
    """Behaviour of the explorer façade."""
    auto_save: bool = Field(default=True, description="Persist every successfully introspected schema.")
    default_timeout_seconds: float = Field(default=30.0, gt=0, description="Request timeout applied when a call does not set one.")
    follow_redirects: bool = Field(default=True)
    connector_overrides: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Options merged into every call for a protocol, e.g. {'rest': {'custom_paths': ['/spec']}}.",
    )


class Config(BaseSettings):
    """Main configuration for Schema Explorer. Loads from environment variables prefixed with SCHEMA_EXPLORER_."""

    model_config = SettingsConfigDict(
        env_prefix='SCHEMA_EXPLORER_',
        env_nested_delimiter='__', # e.g., SCHEMA_EXPLORER_STORAGE__TYPE
        extra='ignore',
        env_file='.env',
        env_file_encoding='utf-8'
    )

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    http_client: HTTPClientConfig = Field(default_factory=HTTPClientConfig)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    explorer: ExplorerSettings = Field(default_factory=ExplorerSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        if _init_values_only.get():
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @classmethod
    def from_file(cls, file_path: Path) -> "Config":
        """Create configuration strictly from a JSON file.
        This does not layer with environment variables; `Config()` reads those.
        """
        with open(file_path) as f:
            config_data = json.load(f)
        token = _init_values_only.set(True)
        try:
            return cls(**config_data)
        finally:
            _init_values_only.reset(token)
