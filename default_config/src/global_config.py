from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from default_config.src.certificate import CERTIFICATE_TYPE_KEY
from default_config.src.errors import (
    REPOSITORY_ERRORS,
    DefaultConfigError,
    InvalidKeyError,
    is_not_found_error,
)
from default_config.src.metrics import METRICS
from default_config.src.registry import GLOBAL_OWNER, Config


class GlobalConfigRepo(Protocol):
    def get(self) -> Config: ...

    def create(self, config: Config) -> Config: ...

    def save_or_merge(self, config: Config) -> Config: ...


class CertificateTypeSource(Protocol):
    def infer(self) -> str: ...


class GlobalConfigWriter:
    """Merges default values into the global configuration without overwriting.

    A key that is already present is never touched, whatever its value (an
    empty string counts as set).  All new keys are collected in one snapshot
    and written with a single save-or-merge at the end.
    """

    def __init__(
        self,
        global_config_repo: GlobalConfigRepo,
        certificate_type_source: CertificateTypeSource,
        logger: logging.Logger | None = None,
    ) -> None:
        self.global_config_repo = global_config_repo
        self.certificate_type_source = certificate_type_source
        self.logger = logger or logging.getLogger(__name__)

    def _load_or_create(self) -> Config:
        try:
            return self.global_config_repo.get()
        except REPOSITORY_ERRORS as exc:
            if not is_not_found_error(exc):
                raise DefaultConfigError(f"error reading global config: {exc}") from exc

        self.logger.info("Global config does not exist yet; creating it")
        try:
            return self.global_config_repo.create(Config(owner=GLOBAL_OWNER))
        except REPOSITORY_ERRORS as exc:
            raise DefaultConfigError(f"error creating new global config: {exc}") from exc

    def _default_value(self, key: str, value: str) -> str:
        if key != CERTIFICATE_TYPE_KEY:
            return value
        try:
            return self.certificate_type_source.infer()
        except DefaultConfigError as exc:
            raise DefaultConfigError(
                f"failed to get default value for {CERTIFICATE_TYPE_KEY}: {exc}"
            ) from exc

    def apply_default_global_config(self, defaults: Mapping[str, str]) -> None:
        self.logger.info("Applying default global config...")

        global_config = self._load_or_create()

        for key, value in defaults.items():
            if key in global_config:
                self.logger.info("Global config key %s already exists. Skipping...", key)
                METRICS.keys_skipped_total.labels(scope="global").inc()
                continue

            value = self._default_value(key, value)

            self.logger.info("Setting global config key %s", key)
            try:
                global_config = global_config.set(key, value)
            except InvalidKeyError as exc:
                raise DefaultConfigError(f"failed to set global config key {key}: {exc}") from exc
            METRICS.keys_applied_total.labels(scope="global").inc()

        try:
            self.global_config_repo.save_or_merge(global_config)
        except REPOSITORY_ERRORS as exc:
            raise DefaultConfigError(f"failed to save global config: {exc}") from exc

        self.logger.info("...Successfully applied default-values to global config.")
