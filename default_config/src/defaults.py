from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from kubernetes.client import CoreV1Api

from default_config.src.certificate import (
    CERTIFICATE_SELF_SIGNED,
    CERTIFICATE_TYPE_KEY,
    CertificateTypeInferrer,
)
from default_config.src.dogu_config import DoguConfigWriter
from default_config.src.errors import (
    STAGE_DOGU_DEFAULTS,
    STAGE_GLOBAL_DEFAULTS,
    DefaultConfigError,
    StageError,
)
from default_config.src.global_config import GlobalConfigWriter
from default_config.src.password import AdminPasswordGenerator
from default_config.src.registry import (
    DoguConfigRepository,
    GlobalConfigRepository,
    SensitiveDoguConfigRepository,
)

PASSWORD_LENGTH = 20
ADMIN_PASSWORD_DOGU = "ldap"
ADMIN_PASSWORD_KEY = "admin_password"

GLOBAL_DEFAULTS: Mapping[str, str] = {
    "domain": "ces.local",
    "admin_group": "cesAdmin",
    "mail_address": "",
    CERTIFICATE_TYPE_KEY: CERTIFICATE_SELF_SIGNED,
    "default_dogu": "cas",
    "k8s/use_internal_ip": "false",
    "k8s/internal_ip": "",
    "password-policy/must_contain_capital_letter": "true",
    "password-policy/must_contain_lower_case_letter": "true",
    "password-policy/must_contain_digit": "true",
    "password-policy/must_contain_special_character": "true",
    "password-policy/min_length": "14",
}

DOGU_DEFAULTS: Mapping[str, Mapping[str, str]] = {
    "postfix": {
        "relayhost": "n/a",
    },
    "ldap": {
        "admin_username": "admin",
        "admin_mail": "admin@ces.invalid",
        "admin_member": "true",
    },
    "cas": {
        "ldap/ds_type": "embedded",
        "ldap/host": "ldap",
        "ldap/port": "389",
        "ldap/search_filter": "(objectClass=person)",
        "ldap/attribute_id": "uid",
        "ldap/attribute_mail": "mail",
        "ldap/attribute_fullname": "cn",
        "ldap/attribute_group": "memberOf",
    },
}


class GlobalDefaultsWriter(Protocol):
    def apply_default_global_config(self, defaults: Mapping[str, str]) -> None: ...


class DoguDefaultsWriter(Protocol):
    def apply_default_dogu_config(
        self,
        defaults: Mapping[str, Mapping[str, str]],
        sensitive_defaults: Mapping[str, Mapping[str, str]],
    ) -> None: ...


class PasswordGenerator(Protocol):
    def generate_password(self, length: int) -> str: ...


class DefaultConfigApplier:
    """Applies global defaults, then dogu defaults; the first failure aborts.

    The default tables are constructor arguments so callers and tests can
    substitute their own without touching module state.
    """

    def __init__(
        self,
        global_config_writer: GlobalDefaultsWriter,
        dogu_config_writer: DoguDefaultsWriter,
        password_generator: PasswordGenerator,
        global_defaults: Mapping[str, str] = GLOBAL_DEFAULTS,
        dogu_defaults: Mapping[str, Mapping[str, str]] = DOGU_DEFAULTS,
        password_length: int = PASSWORD_LENGTH,
        logger: logging.Logger | None = None,
    ) -> None:
        self.global_config_writer = global_config_writer
        self.dogu_config_writer = dogu_config_writer
        self.password_generator = password_generator
        self.global_defaults = global_defaults
        self.dogu_defaults = dogu_defaults
        self.password_length = password_length
        self.logger = logger or logging.getLogger(__name__)

    def sensitive_dogu_defaults(self) -> dict[str, dict[str, str]]:
        """Return the sensitive defaults, generating a fresh admin password."""
        return {
            ADMIN_PASSWORD_DOGU: {
                ADMIN_PASSWORD_KEY: self.password_generator.generate_password(
                    self.password_length
                ),
            },
        }

    def apply_default_config(self) -> None:
        try:
            self.global_config_writer.apply_default_global_config(self.global_defaults)
        except DefaultConfigError as exc:
            raise StageError(
                STAGE_GLOBAL_DEFAULTS, "failed to apply default global config", exc
            ) from exc

        try:
            self.dogu_config_writer.apply_default_dogu_config(
                self.dogu_defaults, self.sensitive_dogu_defaults()
            )
        except DefaultConfigError as exc:
            stage = exc.stage if isinstance(exc, StageError) else STAGE_DOGU_DEFAULTS
            raise StageError(stage, "failed to apply default dogu config", exc) from exc

        self.logger.info("Default config applied")


def build_default_config_applier(
    core_api: CoreV1Api,
    namespace: str,
    global_config_repo: GlobalConfigRepository | None = None,
) -> DefaultConfigApplier:
    """Wire a :class:`DefaultConfigApplier` against the Kubernetes API of *namespace*."""
    if global_config_repo is None:
        global_config_repo = GlobalConfigRepository(core_api, namespace)
    return DefaultConfigApplier(
        global_config_writer=GlobalConfigWriter(
            global_config_repo=global_config_repo,
            certificate_type_source=CertificateTypeInferrer(core_api, namespace),
        ),
        dogu_config_writer=DoguConfigWriter(
            dogu_config_repo=DoguConfigRepository(core_api, namespace),
            sensitive_dogu_config_repo=SensitiveDoguConfigRepository(core_api, namespace),
        ),
        password_generator=AdminPasswordGenerator(),
    )
