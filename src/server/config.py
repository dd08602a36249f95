"""Configuration management for the offline cache service.

Supports YAML-based configuration with environment overrides for secrets.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class ApiConfig:
    """Backend API connection settings."""

    base_url: str = "http://localhost:3000/api"
    token: Optional[str] = None
    timeout: float = 10  # seconds
    verify: bool = True
    ca_bundle: Optional[str] = None


@dataclass
class CacheConfig:
    """Eviction and health-check policy."""

    retention_days: int = 7
    deleted_retention_days: int = 30
    pending_operations_threshold: int = 500
    max_retries: int = 3
    temp_entity_max_age_days: int = 7

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def deleted_retention(self) -> timedelta:
        return timedelta(days=self.deleted_retention_days)

    @property
    def temp_entity_max_age(self) -> timedelta:
        return timedelta(days=self.temp_entity_max_age_days)


@dataclass
class OfflineInitConfig:
    """Startup sequence and background timer settings."""

    startup_delay: float = 2.0  # seconds
    cleanup_interval: int = 24 * 60 * 60  # seconds
    connectivity_poll_interval: int = 30  # seconds, 0 disables polling
    sync_on_reconnect: bool = True


@dataclass
class ServerConfig:
    """Diagnostics server configuration."""

    host: str = "127.0.0.1"
    port: int = 8765
    url_prefix: str = ""


@dataclass
class Config:
    """Main configuration container."""

    deployment_name: str = "Offline Cache"

    api: ApiConfig = field(default_factory=ApiConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    offline_init: OfflineInitConfig = field(default_factory=OfflineInitConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Data directory override
    data_dir: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        deployment = data.get("deployment", {})

        api_data = data.get("api", {})
        api = ApiConfig(
            base_url=api_data.get("base_url", "http://localhost:3000/api"),
            token=api_data.get("token"),
            timeout=api_data.get("timeout", 10),
            verify=api_data.get("verify", True),
            ca_bundle=api_data.get("ca_bundle"),
        )

        cache_data = data.get("cache", {})
        cache = CacheConfig(
            retention_days=cache_data.get("retention_days", 7),
            deleted_retention_days=cache_data.get("deleted_retention_days", 30),
            pending_operations_threshold=cache_data.get("pending_operations_threshold", 500),
            max_retries=cache_data.get("max_retries", 3),
            temp_entity_max_age_days=cache_data.get("temp_entity_max_age_days", 7),
        )

        init_data = data.get("offline_init", {})
        offline_init = OfflineInitConfig(
            startup_delay=init_data.get("startup_delay", 2.0),
            cleanup_interval=init_data.get("cleanup_interval", 24 * 60 * 60),
            connectivity_poll_interval=init_data.get("connectivity_poll_interval", 30),
            sync_on_reconnect=init_data.get("sync_on_reconnect", True),
        )

        server_data = data.get("server", {})
        server = ServerConfig(
            host=server_data.get("host", "127.0.0.1"),
            port=server_data.get("port", 8765),
            url_prefix=server_data.get("url_prefix", ""),
        )

        return cls(
            deployment_name=deployment.get("name", "Offline Cache"),
            api=api,
            cache=cache,
            offline_init=offline_init,
            server=server,
            data_dir=data.get("data_dir"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load config from YAML file."""
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load config from path or defaults.

        Checks in order:
        1. Provided path
        2. OFFLINE_CACHE_CONFIG env var
        3. ./configs/config.yaml
        4. ./config.yaml
        5. ~/.offline_cache/config.yaml
        6. Default config

        The API token falls back to OFFLINE_CACHE_API_TOKEN when the file
        doesn't set one.
        """
        paths_to_try = []

        if config_path:
            paths_to_try.append(Path(config_path))

        if env_path := os.environ.get("OFFLINE_CACHE_CONFIG"):
            paths_to_try.append(Path(env_path))

        paths_to_try.extend([
            Path("./configs/config.yaml"),
            Path("./config.yaml"),
            Path.home() / ".offline_cache" / "config.yaml",
        ])

        config = cls()
        for path in paths_to_try:
            if path.exists():
                config = cls.from_yaml(path)
                break

        if not config.api.token:
            config.api.token = os.environ.get("OFFLINE_CACHE_API_TOKEN") or None
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (the API token is never included)."""
        return {
            "deployment": {"name": self.deployment_name},
            "api": {
                "base_url": self.api.base_url,
                "timeout": self.api.timeout,
                "verify": self.api.verify,
                "has_token": bool(self.api.token),
            },
            "cache": {
                "retention_days": self.cache.retention_days,
                "deleted_retention_days": self.cache.deleted_retention_days,
                "pending_operations_threshold": self.cache.pending_operations_threshold,
                "max_retries": self.cache.max_retries,
                "temp_entity_max_age_days": self.cache.temp_entity_max_age_days,
            },
            "offline_init": {
                "startup_delay": self.offline_init.startup_delay,
                "cleanup_interval": self.offline_init.cleanup_interval,
                "connectivity_poll_interval": self.offline_init.connectivity_poll_interval,
                "sync_on_reconnect": self.offline_init.sync_on_reconnect,
            },
            "server": {
                "host": self.server.host,
                "port": self.server.port,
                "url_prefix": self.server.url_prefix,
            },
            "data_dir": self.data_dir,
        }
