from __future__ import annotations

import logging
from dataclasses import dataclass, field

from prometheus_client import CollectorRegistry, Counter, Gauge, Info, push_to_gateway

LOGGER = logging.getLogger(__name__)

REGISTRY = CollectorRegistry(auto_describe=True)


@dataclass(frozen=True)
class JobMetrics:
    """Prometheus metrics collected during one run of the default-config job.

    The job is short-lived, so metrics live on a dedicated registry that is
    pushed to a Pushgateway at exit instead of being scraped.  Key counters
    carry a ``scope`` label (``global``, ``dogu``, ``sensitive-dogu``).
    """

    keys_applied_total: Counter = field(
        default_factory=lambda: Counter(
            "default_config_keys_applied_total",
            "Total default keys written because they were absent",
            ["scope"],
            registry=REGISTRY,
        )
    )
    keys_skipped_total: Counter = field(
        default_factory=lambda: Counter(
            "default_config_keys_skipped_total",
            "Total default keys skipped because a value was already set",
            ["scope"],
            registry=REGISTRY,
        )
    )
    fqdn_lookup_attempts_total: Counter = field(
        default_factory=lambda: Counter(
            "default_config_fqdn_lookup_attempts_total",
            "Total load balancer service lookups while resolving the FQDN",
            registry=REGISTRY,
        )
    )
    password_rng_fallbacks_total: Counter = field(
        default_factory=lambda: Counter(
            "default_config_password_rng_fallbacks_total",
            "Total password characters chosen without the secure random source",
            registry=REGISTRY,
        )
    )
    last_success_timestamp: Gauge = field(
        default_factory=lambda: Gauge(
            "default_config_last_success_timestamp_seconds",
            "Unix time of the last successful job run",
            registry=REGISTRY,
        )
    )
    job_failures_total: Counter = field(
        default_factory=lambda: Counter(
            "default_config_job_failures_total",
            "Total failed job runs by stage",
            ["stage"],
            registry=REGISTRY,
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "default_config",
            "Build information for the default-config job",
            registry=REGISTRY,
        )
    )


METRICS = JobMetrics()


def push_metrics(gateway: str | None, job: str = "default-config") -> bool:
    """Push the job registry to *gateway*; return False when skipped or failed.

    Push errors are logged, never raised.
    """
    if not gateway:
        return False
    try:
        push_to_gateway(gateway, job=job, registry=REGISTRY)
    except OSError:
        LOGGER.exception("Failed to push metrics to %s", gateway)
        return False
    LOGGER.info("Pushed job metrics to %s", gateway)
    return True
