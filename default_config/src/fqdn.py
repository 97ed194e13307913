from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from kubernetes.client import ApiException, CoreV1Api
from urllib3.exceptions import HTTPError

from default_config.src.errors import (
    REPOSITORY_ERRORS,
    STAGE_FQDN,
    InvalidKeyError,
    LoadBalancerError,
    LoadBalancerTimeoutError,
    NotLoadBalancerError,
    StageError,
    format_duration,
    is_not_found_error,
)
from default_config.src.global_config import GlobalConfigRepo
from default_config.src.metrics import METRICS
from default_config.src.registry import GLOBAL_OWNER, Config

FQDN_KEY = "fqdn"
LOAD_BALANCER_SERVICE_NAME = "ces-loadbalancer"
SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"
DEFAULT_RETRY_INTERVAL_SECONDS = 2.0


class FQDNApplier:
    """Writes the load balancer's external address into the global ``fqdn`` key.

    If ``fqdn`` is already set to a non-empty value nothing is looked up or
    written.  Otherwise the load balancer service is polled every
    ``retry_interval_seconds`` until an ingress reports an IP (preferred) or
    a hostname, the deadline passes, or ``stop_event`` is set.  A service
    that is not of type ``LoadBalancer`` fails immediately.

    ``stop_event`` and ``monotonic_fn`` are the only suspension and time
    sources, so shutdown signals interrupt the wait between attempts and
    tests can drive the loop without sleeping.  A lookup already in flight
    is not interrupted.
    """

    def __init__(
        self,
        global_config_repo: GlobalConfigRepo,
        core_api: CoreV1Api,
        namespace: str,
        service_name: str = LOAD_BALANCER_SERVICE_NAME,
        retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS,
        stop_event: threading.Event | None = None,
        monotonic_fn: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.global_config_repo = global_config_repo
        self.core_api = core_api
        self.namespace = namespace
        self.service_name = service_name
        self.retry_interval_seconds = retry_interval_seconds
        self.stop_event = stop_event or threading.Event()
        self.monotonic_fn = monotonic_fn
        self.logger = logger or logging.getLogger(__name__)

    def apply_initial_fqdn(self, timeout_seconds: float) -> None:
        try:
            global_config = self.global_config_repo.get()
        except REPOSITORY_ERRORS as exc:
            if not is_not_found_error(exc):
                raise StageError(
                    STAGE_FQDN, "error reading global config while checking for fqdn", exc
                ) from exc
            global_config = Config(owner=GLOBAL_OWNER)

        if global_config.get(FQDN_KEY):
            self.logger.info("fqdn already set. Skipping...")
            return

        self.logger.info("fqdn not set. Retrieving fqdn from load balancer service...")

        try:
            fqdn = self.get_fqdn_from_load_balancer_service(timeout_seconds)
        except LoadBalancerError as exc:
            raise StageError(
                STAGE_FQDN, "error getting fqdn from load balancer service", exc
            ) from exc

        self.logger.info("fqdn %s retrieved from load balancer service", fqdn)

        try:
            global_config = global_config.set(FQDN_KEY, fqdn)
        except InvalidKeyError as exc:
            raise StageError(STAGE_FQDN, "failed to set fqdn in global config", exc) from exc

        try:
            self.global_config_repo.save_or_merge(global_config)
        except REPOSITORY_ERRORS as exc:
            raise StageError(
                STAGE_FQDN, "failed to save global config while setting fqdn", exc
            ) from exc

        self.logger.info("...Successfully applied fqdn from load balancer service to global config.")

    @staticmethod
    def _external_address(service: Any) -> str | None:
        """Return the IP, else the hostname, of the first ingress entry."""
        status = getattr(service, "status", None)
        load_balancer = getattr(status, "load_balancer", None)
        ingresses = getattr(load_balancer, "ingress", None) or []
        if not ingresses:
            return None
        ingress = ingresses[0]
        return getattr(ingress, "ip", None) or getattr(ingress, "hostname", None) or None

    def get_fqdn_from_load_balancer_service(self, timeout_seconds: float) -> str:
        deadline = self.monotonic_fn() + timeout_seconds
        attempt = 0

        while True:
            attempt += 1
            METRICS.fqdn_lookup_attempts_total.inc()
            try:
                service = self.core_api.read_namespaced_service(
                    name=self.service_name, namespace=self.namespace
                )
            except (ApiException, HTTPError) as exc:
                self.logger.debug(
                    "Error getting load balancer service %s (attempt %d): %s",
                    self.service_name,
                    attempt,
                    exc,
                )
            else:
                service_type = getattr(getattr(service, "spec", None), "type", None)
                if service_type != SERVICE_TYPE_LOAD_BALANCER:
                    raise NotLoadBalancerError(
                        f'service "{self.service_name}" is not of type {SERVICE_TYPE_LOAD_BALANCER}'
                    )

                address = self._external_address(service)
                if address:
                    return address
                self.logger.debug(
                    "Load balancer service %s has no external address yet (attempt %d)",
                    self.service_name,
                    attempt,
                )

            remaining = deadline - self.monotonic_fn()
            if remaining <= self.retry_interval_seconds:
                # The deadline arrives before the next attempt would.
                if remaining > 0 and self.stop_event.wait(timeout=remaining):
                    raise self._interrupted()
                raise LoadBalancerTimeoutError(
                    f"timed out after {format_duration(timeout_seconds)} waiting for "
                    f'external address on service "{self.service_name}"'
                )

            if self.stop_event.wait(timeout=self.retry_interval_seconds):
                raise self._interrupted()

    def _interrupted(self) -> LoadBalancerError:
        return LoadBalancerError(
            f'interrupted while waiting for external address on service "{self.service_name}"'
        )
