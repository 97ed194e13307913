from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from default_config.src.errors import ConfigError

DEFAULT_NAMESPACE = "ecosystem"
DEFAULT_WAIT_TIMEOUT_MINUTES = 5
DEFAULT_RETRY_INTERVAL_SECONDS = 2


@dataclass(frozen=True)
class JobConfig:
    """Immutable job configuration loaded at startup.

    Attributes:
        namespace:              Namespace holding the config resources and the load balancer.
        log_level:              Root log level name.
        wait_timeout_seconds:   Deadline for discovering the load balancer address.
        retry_interval_seconds: Pause between two load balancer lookups.
        pushgateway_address:    Pushgateway for job metrics; ``None`` disables pushing.
    """

    namespace: str
    log_level: str
    wait_timeout_seconds: float
    retry_interval_seconds: float
    pushgateway_address: str | None = None


def env_int(
    values: Mapping[str, str],
    name: str,
    default: int,
    *,
    minimum: int | None = None,
) -> int:
    raw = values.get(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer, got: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    return value


def load_job_config(env: Mapping[str, str] | None = None) -> JobConfig:
    """Load the job configuration from the environment.

    Environment variables (with defaults):
        ``NAMESPACE``: target namespace (``ecosystem``).
        ``LOG_LEVEL``: root log level (``INFO``).
        ``WAIT_TIMEOUT_MINUTES``: FQDN discovery deadline (``5``).
        ``FQDN_RETRY_INTERVAL_SECONDS``: pause between lookups (``2``).
        ``PUSHGATEWAY_ADDRESS``: optional Pushgateway ``host:port``.
    """
    values = env if env is not None else os.environ

    namespace = values.get("NAMESPACE", DEFAULT_NAMESPACE).strip()
    if not namespace:
        raise ConfigError("NAMESPACE must be a non-empty string")

    wait_timeout_minutes = env_int(
        values, "WAIT_TIMEOUT_MINUTES", DEFAULT_WAIT_TIMEOUT_MINUTES, minimum=1
    )
    retry_interval_seconds = env_int(
        values, "FQDN_RETRY_INTERVAL_SECONDS", DEFAULT_RETRY_INTERVAL_SECONDS, minimum=1
    )

    return JobConfig(
        namespace=namespace,
        log_level=values.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        wait_timeout_seconds=float(wait_timeout_minutes * 60),
        retry_interval_seconds=float(retry_interval_seconds),
        pushgateway_address=values.get("PUSHGATEWAY_ADDRESS") or None,
    )
