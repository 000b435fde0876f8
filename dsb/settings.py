from __future__ import annotations

import math
import os
import socket
from dataclasses import dataclass, field
from typing import Mapping

ADDRESS_MODES = ("published", "network")
LOG_FORMATS = ("console", "json")
REDIS_SCHEMES = ("redis://", "rediss://", "unix://")


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Cycle timing
    refresh_interval_s: int = 20
    lease_multiplier: float = 3.0

    # Collaborators
    redis_url: str = "redis://localhost:6379/0"
    key_prefix: str = "/dsb/domains/"
    docker_url: str = "unix:///var/run/docker.sock"

    # Container metadata convention
    label_prefix: str = "dsb.domain"
    envvar: str = "DSB_DOMAINS"
    address_mode: str = "published"  # published|network
    advertise_host: str = field(default_factory=socket.gethostname)
    node_id: str = field(default_factory=socket.gethostname)

    # Process behaviour
    systemd: bool = False
    enumerate: bool = False
    dry_run: bool = False
    once: bool = False

    # Logging
    log_level: str = "INFO"
    log_timestamps: bool = True
    log_format: str = "console"  # console|json

    @property
    def lease_seconds(self) -> int:
        """Registry TTL for every published entry.

        Always strictly greater than the refresh interval, so one missed
        cycle does not depopulate the registry.
        """
        interval = max(1, self.refresh_interval_s)
        lease = math.ceil(interval * self.lease_multiplier)
        return max(lease, interval + 1)

    def validate(self) -> None:
        if self.refresh_interval_s < 1:
            raise ValueError("refresh interval must be at least 1 second.")
        if not self.lease_multiplier > 1.0:
            raise ValueError("lease multiplier must be greater than 1.")
        if self.address_mode not in ADDRESS_MODES:
            raise ValueError(f"address mode must be one of {', '.join(ADDRESS_MODES)}.")
        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log format must be one of {', '.join(LOG_FORMATS)}.")
        if not self.redis_url.startswith(REDIS_SCHEMES):
            raise ValueError(f"redis url must start with one of {', '.join(REDIS_SCHEMES)}.")
        if not self.key_prefix:
            raise ValueError("key prefix must not be empty.")
        if not self.label_prefix or self.label_prefix.endswith("."):
            raise ValueError("label prefix must be non-empty and must not end with '.'.")


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build settings from DSB_* environment variables."""
    env = os.environ if env is None else env
    host = socket.gethostname()
    return Settings(
        refresh_interval_s=_env_int(env, "DSB_REFRESH_INTERVAL_S", 20),
        lease_multiplier=_env_float(env, "DSB_LEASE_MULTIPLIER", 3.0),
        redis_url=_env_str(env, "DSB_REDIS_URL", "redis://localhost:6379/0"),
        key_prefix=_env_str(env, "DSB_KEY_PREFIX", "/dsb/domains/"),
        docker_url=_env_str(env, "DSB_DOCKER_URL", "unix:///var/run/docker.sock"),
        label_prefix=_env_str(env, "DSB_LABEL_PREFIX", "dsb.domain"),
        envvar=_env_str(env, "DSB_ENVVAR", "DSB_DOMAINS"),
        address_mode=_env_str(env, "DSB_ADDRESS_MODE", "published").lower(),
        advertise_host=_env_str(env, "DSB_ADVERTISE_HOST", host),
        node_id=_env_str(env, "DSB_NODE_ID", host),
        systemd=_env_bool(env, "DSB_SYSTEMD", False),
        enumerate=_env_bool(env, "DSB_ENUMERATE", False),
        dry_run=_env_bool(env, "DSB_DRY_RUN", False),
        log_level=_env_str(env, "DSB_LOG_LEVEL", "INFO").upper(),
        log_timestamps=_env_bool(env, "DSB_LOG_TIMESTAMPS", True),
        log_format=_env_str(env, "DSB_LOG_FORMAT", "console").lower(),
    )
