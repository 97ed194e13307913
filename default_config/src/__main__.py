from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading
import time
from typing import Protocol

from kubernetes.client import CoreV1Api

from default_config.src.config import JobConfig, load_job_config
from default_config.src.defaults import build_default_config_applier
from default_config.src.errors import (
    STAGE_CONFIGURATION,
    ConfigError,
    DefaultConfigError,
    StageError,
)
from default_config.src.fqdn import FQDNApplier
from default_config.src.kube import build_core_client, load_kube_configuration
from default_config.src.metrics import METRICS, push_metrics
from default_config.src.registry import GLOBAL_CONFIG_NAME, GlobalConfigRepository

RUNTIME_VERSION = "0.1.0"
LOGGER = logging.getLogger(__name__)
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|admin_password|password|passwd|secret|api[_-]?key)\b"
            r"['\"]?\s*[:=]\s*['\"]?)([^\s,;'\"}]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|access_token|api_key|password)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """One JSON object per line; failures of a job stage also carry ``stage``."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
            if isinstance(record.exc_info[1], StageError):
                log_entry["stage"] = record.exc_info[1].stage
        return json.dumps(log_entry)


def configure_logging(log_level: str) -> None:
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.addHandler(log_handler)
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        LOGGER.error("Unknown log level %r; using INFO", log_level)
        level = logging.INFO
    logging.root.setLevel(level)
    LOGGER.info("Configured logger with level %s", logging.getLevelName(level))


class ConfigApplier(Protocol):
    def apply_default_config(self) -> None: ...


class InitialFQDNApplier(Protocol):
    def apply_initial_fqdn(self, timeout_seconds: float) -> None: ...


def apply_defaults(
    config_applier: ConfigApplier,
    fqdn_applier: InitialFQDNApplier,
    wait_timeout_seconds: float,
) -> None:
    """Run both job stages once: default config first, then the initial FQDN."""
    config_applier.apply_default_config()
    fqdn_applier.apply_initial_fqdn(wait_timeout_seconds)


def run(
    job_config: JobConfig,
    core_api: CoreV1Api,
    stop_event: threading.Event | None = None,
) -> None:
    LOGGER.info("Starting to apply default configs in namespace %s", job_config.namespace)

    global_config_repo = GlobalConfigRepository(core_api, job_config.namespace)
    config_applier = build_default_config_applier(
        core_api=core_api,
        namespace=job_config.namespace,
        global_config_repo=global_config_repo,
    )
    fqdn_applier = FQDNApplier(
        global_config_repo=global_config_repo,
        core_api=core_api,
        namespace=job_config.namespace,
        retry_interval_seconds=job_config.retry_interval_seconds,
        stop_event=stop_event,
    )

    apply_defaults(config_applier, fqdn_applier, job_config.wait_timeout_seconds)
    LOGGER.info("Default configs applied to %s and dogu configs", GLOBAL_CONFIG_NAME)


def main() -> None:
    """Job entrypoint: configure logging, wire the Kubernetes client and apply all defaults."""
    try:
        job_config = load_job_config()
    except ConfigError as exc:
        configure_logging("INFO")
        METRICS.job_failures_total.labels(stage=STAGE_CONFIGURATION).inc()
        LOGGER.exception("Invalid job configuration")
        push_metrics(os.getenv("PUSHGATEWAY_ADDRESS"))
        raise SystemExit(1) from exc

    configure_logging(job_config.log_level)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    stop_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        LOGGER.info("Received signal %d, stopping", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    load_kube_configuration()
    core_api = build_core_client()

    try:
        run(job_config, core_api, stop_event=stop_event)
    except DefaultConfigError as exc:
        stage = exc.stage if isinstance(exc, StageError) else "unknown"
        METRICS.job_failures_total.labels(stage=stage).inc()
        LOGGER.exception("Failed to apply default config (stage: %s)", stage)
        push_metrics(job_config.pushgateway_address)
        raise SystemExit(1) from exc

    METRICS.last_success_timestamp.set(time.time())
    push_metrics(job_config.pushgateway_address)
    LOGGER.info("Exiting")


if __name__ == "__main__":
    main()
