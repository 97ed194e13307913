from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from default_config.src.errors import (
    REPOSITORY_ERRORS,
    STAGE_DOGU_DEFAULTS,
    STAGE_SENSITIVE_DOGU_DEFAULTS,
    DefaultConfigError,
    InvalidKeyError,
    StageError,
    is_not_found_error,
)
from default_config.src.metrics import METRICS
from default_config.src.registry import Config


class DoguConfigRepo(Protocol):
    def get(self, dogu_name: str) -> Config: ...

    def create(self, config: Config) -> Config: ...

    def save_or_merge(self, config: Config) -> Config: ...


class DoguConfigWriter:
    """Merges per-dogu defaults into the plain and the sensitive dogu config stores.

    The plain defaults are applied first, then the sensitive ones.  Each dogu
    is read (or created), merged with skip-if-exists semantics and saved
    once.  The first failing dogu aborts the whole call; dogus processed
    before it keep their new values and a re-run picks up the rest.
    """

    def __init__(
        self,
        dogu_config_repo: DoguConfigRepo,
        sensitive_dogu_config_repo: DoguConfigRepo,
        logger: logging.Logger | None = None,
    ) -> None:
        self.dogu_config_repo = dogu_config_repo
        self.sensitive_dogu_config_repo = sensitive_dogu_config_repo
        self.logger = logger or logging.getLogger(__name__)

    def apply_default_dogu_config(
        self,
        defaults: Mapping[str, Mapping[str, str]],
        sensitive_defaults: Mapping[str, Mapping[str, str]],
    ) -> None:
        self.logger.info("Applying default dogu config...")
        try:
            self._apply_defaults_for_repo(defaults, self.dogu_config_repo, scope="dogu")
        except DefaultConfigError as exc:
            raise StageError(STAGE_DOGU_DEFAULTS, "failed to apply default dogu config", exc) from exc

        self.logger.info("Applying default sensitive dogu config...")
        try:
            self._apply_defaults_for_repo(
                sensitive_defaults, self.sensitive_dogu_config_repo, scope="sensitive-dogu"
            )
        except DefaultConfigError as exc:
            raise StageError(
                STAGE_SENSITIVE_DOGU_DEFAULTS,
                "failed to apply default sensitive dogu config",
                exc,
            ) from exc

    def _load_or_create(self, dogu: str, repo: DoguConfigRepo) -> Config:
        try:
            return repo.get(dogu)
        except REPOSITORY_ERRORS as exc:
            if not is_not_found_error(exc):
                raise DefaultConfigError(
                    f"error reading dogu config for dogu {dogu!r}: {exc}"
                ) from exc

        try:
            return repo.create(Config(owner=dogu))
        except REPOSITORY_ERRORS as exc:
            raise DefaultConfigError(
                f"error creating new dogu config for dogu {dogu!r}: {exc}"
            ) from exc

    def _apply_defaults_for_repo(
        self,
        defaults: Mapping[str, Mapping[str, str]],
        repo: DoguConfigRepo,
        scope: str,
    ) -> None:
        for dogu, dogu_defaults in defaults.items():
            self.logger.info("Applying default %s config for dogu %s", scope, dogu)

            dogu_config = self._load_or_create(dogu, repo)

            for key, value in dogu_defaults.items():
                if key in dogu_config:
                    self.logger.debug(
                        "Dogu config key %s of dogu %s already exists. Skipping...", key, dogu
                    )
                    METRICS.keys_skipped_total.labels(scope=scope).inc()
                    continue

                self.logger.debug("Setting dogu config key %s of dogu %s", key, dogu)
                try:
                    dogu_config = dogu_config.set(key, value)
                except InvalidKeyError as exc:
                    raise DefaultConfigError(
                        f"failed to set dogu config key {key!r} for dogu {dogu!r}: {exc}"
                    ) from exc
                METRICS.keys_applied_total.labels(scope=scope).inc()

            try:
                repo.save_or_merge(dogu_config)
            except REPOSITORY_ERRORS as exc:
                raise DefaultConfigError(
                    f"failed to save new dogu config for dogu {dogu!r}: {exc}"
                ) from exc

            self.logger.info("...Successfully applied default-values to dogu config of %s.", dogu)
