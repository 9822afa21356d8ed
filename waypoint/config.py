from __future__ import annotations

import os
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError

SUPPORTED_SCHEMES = ("memory", "sqlite", "postgres", "postgresql", "redis", "rediss")


class RuntimeConfig(BaseModel):
    """Options recognized by a waypoint runtime."""

    name: Optional[str] = None
    store_connection: Optional[str] = None
    executor_id: str = "local"
    connect_timeout: float = Field(default=10.0, gt=0)
    recovery_concurrency: int = Field(default=4, ge=1)
    store_retry_attempts: int = Field(default=5, ge=1)
    pending_grace_seconds: float = Field(default=30.0, ge=0)
    shutdown_timeout: Optional[float] = None

    def validate_required(self) -> None:
        """Raise ``ConfigurationError`` unless the runtime can be launched."""
        missing = [
            option
            for option in ("name", "store_connection")
            if not getattr(self, option)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required option(s): {', '.join(missing)}"
            )
        scheme = self.store_connection.split("://", 1)[0].lower()
        if "://" not in self.store_connection or scheme not in SUPPORTED_SCHEMES:
            raise ConfigurationError(
                f"Unsupported store connection: {self.store_connection}"
            )


def coerce_config(options: RuntimeConfig | Mapping[str, Any] | None) -> RuntimeConfig:
    """Accept a config model or a plain mapping of options."""
    if options is None:
        return RuntimeConfig()
    if isinstance(options, RuntimeConfig):
        return options
    data = dict(options)
    # camelCase spelling used by other SDKs
    if "storeConnection" in data:
        data.setdefault("store_connection", data.pop("storeConnection"))
    try:
        return RuntimeConfig(**data)
    except ValidationError as exc:
        raise ConfigurationError(str(exc)) from exc


def load_config(path: Optional[str] = None) -> RuntimeConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to WAYPOINT_CONFIG env
            variable or 'waypoint.yaml' in the current directory.
    """

    config_path = path or os.getenv("WAYPOINT_CONFIG", "waypoint.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = coerce_config(data)
    else:
        config = RuntimeConfig()

    env_name = os.getenv("WAYPOINT_APP_NAME")
    if env_name:
        config.name = env_name
    env_store = os.getenv("WAYPOINT_SYSTEM_DATABASE_URL")
    if env_store:
        config.store_connection = env_store
    return config
