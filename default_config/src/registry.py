from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any

import yaml
from kubernetes.client import ApiException, CoreV1Api, V1ConfigMap, V1ObjectMeta, V1Secret
from urllib3.exceptions import HTTPError

from default_config.src.errors import (
    ConflictError,
    InvalidKeyError,
    NotFoundError,
    RegistryError,
)

GLOBAL_OWNER = "global"
CONFIG_DATA_KEY = "config.yaml"
GLOBAL_CONFIG_NAME = "global-config"
DOGU_NAME_LABEL = "dogu.name"
CONFIG_TYPE_LABEL = "k8s.cloudogu.com/type"
MAX_MERGE_ATTEMPTS = 5


def validate_key(key: str, entries: Mapping[str, str]) -> None:
    """Reject keys that cannot be stored as a path in the nested YAML document.

    A key may not be empty, start or end with ``/``, contain an empty path
    segment, or be both a leaf value and the parent of another key.
    """
    if not key or key.startswith("/") or key.endswith("/") or "//" in key:
        raise InvalidKeyError(f"invalid config key {key!r}")

    for existing in entries:
        if existing == key:
            continue
        if existing.startswith(key + "/") or key.startswith(existing + "/"):
            raise InvalidKeyError(
                f"config key {key!r} collides with existing key {existing!r}"
            )


@dataclass(frozen=True)
class Config:
    """Immutable snapshot of one configuration resource.

    ``entries`` is the working copy; ``persisted`` is what was stored when the
    snapshot was read, so :meth:`changes` can tell a save-or-merge exactly
    which keys this snapshot touched.
    """

    owner: str
    entries: Mapping[str, str] = field(default_factory=dict)
    persisted: Mapping[str, str] = field(default_factory=dict)
    resource_version: str | None = None

    def get(self, key: str) -> str | None:
        return self.entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def set(self, key: str, value: str) -> Config:
        """Return a new snapshot with *key* set to *value*."""
        validate_key(key, self.entries)
        entries = dict(self.entries)
        entries[key] = value
        return replace(self, entries=entries)

    def changes(self) -> dict[str, str | None]:
        """Return keys added or modified since the read, and removed keys mapped to ``None``."""
        changed: dict[str, str | None] = {
            key: value
            for key, value in self.entries.items()
            if key not in self.persisted or self.persisted[key] != value
        }
        for key in self.persisted:
            if key not in self.entries:
                changed[key] = None
        return changed


def dump_entries(entries: Mapping[str, str]) -> str:
    """Serialize flat entries into the nested YAML document stored in ``config.yaml``."""
    tree: dict[str, Any] = {}
    for key in sorted(entries):
        *parents, leaf = key.split("/")
        node = tree
        for part in parents:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise InvalidKeyError(f"config key {key!r} collides with existing key {part!r}")
            node = child
        if isinstance(node.get(leaf), dict):
            raise InvalidKeyError(f"config key {key!r} collides with a nested key")
        node[leaf] = entries[key]
    if not tree:
        return ""
    return yaml.safe_dump(tree, default_flow_style=False, sort_keys=True)


def _scalar_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def load_entries(text: str | None) -> dict[str, str]:
    """Parse a stored ``config.yaml`` document into flat ``a/b -> value`` entries."""
    if not text or not text.strip():
        return {}
    try:
        tree = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise RegistryError(f"invalid {CONFIG_DATA_KEY} document: {exc}") from exc
    if tree is None:
        return {}
    if not isinstance(tree, dict):
        raise RegistryError(f"{CONFIG_DATA_KEY} must contain a mapping, got {type(tree).__name__}")

    entries: dict[str, str] = {}

    def _walk(node: dict[Any, Any], prefix: str) -> None:
        for key, value in node.items():
            path = f"{prefix}{key}"
            if isinstance(value, dict):
                _walk(value, path + "/")
            else:
                entries[path] = _scalar_to_str(value)

    _walk(tree, "")
    return entries


def _translate_api_error(exc: ApiException | HTTPError, what: str) -> RegistryError:
    if isinstance(exc, HTTPError):
        return RegistryError(f"request for {what} failed: {exc}")
    if exc.status == 404:
        return NotFoundError(f"{what} not found")
    if exc.status == 409:
        return ConflictError(f"conflict while writing {what}: {exc.reason}")
    return RegistryError(f"kubernetes api error for {what} (status={exc.status}): {exc.reason}")


def _resource_version(obj: Any) -> str | None:
    version = getattr(getattr(obj, "metadata", None), "resource_version", None)
    return version if isinstance(version, str) else None


class ConfigMapStore:
    """Reads and writes the ``config.yaml`` field of ConfigMaps in one namespace."""

    kind = "configmap"

    def __init__(self, core_api: CoreV1Api, namespace: str) -> None:
        self.core_api = core_api
        self.namespace = namespace

    def read(self, name: str) -> tuple[str, str | None]:
        try:
            config_map = self.core_api.read_namespaced_config_map(
                name=name, namespace=self.namespace
            )
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        data = getattr(config_map, "data", None) or {}
        return data.get(CONFIG_DATA_KEY) or "", _resource_version(config_map)

    def create(self, name: str, labels: dict[str, str], text: str) -> str | None:
        body = V1ConfigMap(
            metadata=V1ObjectMeta(name=name, namespace=self.namespace, labels=labels),
            data={CONFIG_DATA_KEY: text},
        )
        try:
            created = self.core_api.create_namespaced_config_map(
                namespace=self.namespace, body=body
            )
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        return _resource_version(created)

    def replace(
        self, name: str, labels: dict[str, str], text: str, resource_version: str | None
    ) -> str | None:
        body = V1ConfigMap(
            metadata=V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                labels=labels,
                resource_version=resource_version,
            ),
            data={CONFIG_DATA_KEY: text},
        )
        try:
            replaced = self.core_api.replace_namespaced_config_map(
                name=name, namespace=self.namespace, body=body
            )
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        return _resource_version(replaced)


class SecretStore(ConfigMapStore):
    """Same contract as :class:`ConfigMapStore`, backed by base64-encoded Secret data."""

    kind = "secret"

    @staticmethod
    def _encode(text: str) -> str:
        return base64.b64encode(text.encode("utf-8")).decode("ascii")

    def read(self, name: str) -> tuple[str, str | None]:
        try:
            secret = self.core_api.read_namespaced_secret(name=name, namespace=self.namespace)
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        data = getattr(secret, "data", None) or {}
        encoded = data.get(CONFIG_DATA_KEY)
        if not encoded:
            return "", _resource_version(secret)
        try:
            text = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise RegistryError(f"{self.kind} {name!r} holds undecodable data: {exc}") from exc
        return text, _resource_version(secret)

    def create(self, name: str, labels: dict[str, str], text: str) -> str | None:
        body = V1Secret(
            metadata=V1ObjectMeta(name=name, namespace=self.namespace, labels=labels),
            data={CONFIG_DATA_KEY: self._encode(text)},
        )
        try:
            created = self.core_api.create_namespaced_secret(namespace=self.namespace, body=body)
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        return _resource_version(created)

    def replace(
        self, name: str, labels: dict[str, str], text: str, resource_version: str | None
    ) -> str | None:
        body = V1Secret(
            metadata=V1ObjectMeta(
                name=name,
                namespace=self.namespace,
                labels=labels,
                resource_version=resource_version,
            ),
            data={CONFIG_DATA_KEY: self._encode(text)},
        )
        try:
            replaced = self.core_api.replace_namespaced_secret(
                name=name, namespace=self.namespace, body=body
            )
        except (ApiException, HTTPError) as exc:
            raise _translate_api_error(exc, f"{self.kind} {name!r}") from exc
        return _resource_version(replaced)


class _ConfigRepository:
    """Shared get/create/save-or-merge logic for global and dogu configuration."""

    config_type = ""

    def __init__(
        self,
        store: ConfigMapStore,
        logger: logging.Logger | None = None,
        max_merge_attempts: int = MAX_MERGE_ATTEMPTS,
    ) -> None:
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.max_merge_attempts = max_merge_attempts

    def resource_name(self, owner: str) -> str:
        return f"{owner}-config"

    def labels(self, owner: str) -> dict[str, str]:
        return {"app": "ces", CONFIG_TYPE_LABEL: self.config_type}

    def _get(self, owner: str) -> Config:
        text, resource_version = self.store.read(self.resource_name(owner))
        entries = load_entries(text)
        return Config(
            owner=owner,
            entries=entries,
            persisted=dict(entries),
            resource_version=resource_version,
        )

    def _create(self, config: Config) -> Config:
        entries = dict(config.entries)
        resource_version = self.store.create(
            self.resource_name(config.owner),
            self.labels(config.owner),
            dump_entries(entries),
        )
        return Config(
            owner=config.owner,
            entries=entries,
            persisted=dict(entries),
            resource_version=resource_version,
        )

    def _save_or_merge(self, config: Config) -> Config:
        """Apply the snapshot's changes on top of the currently stored resource.

        The stored resource is re-read on every attempt and replaced using its
        resource version, so a concurrent writer causes a conflict and another
        merge round instead of a lost update.
        """
        changes = config.changes()
        name = self.resource_name(config.owner)
        if not changes:
            self.logger.debug("No changes for %s %s; nothing to save", self.store.kind, name)
            return config

        for attempt in range(1, self.max_merge_attempts + 1):
            try:
                current = self._get(config.owner)
            except NotFoundError:
                created = {key: value for key, value in changes.items() if value is not None}
                try:
                    return self._create(Config(owner=config.owner, entries=created))
                except ConflictError:
                    self.logger.info(
                        "%s %s was created concurrently; merging again (attempt %d)",
                        self.store.kind,
                        name,
                        attempt,
                    )
                    continue

            merged = dict(current.entries)
            for key, value in changes.items():
                if value is None:
                    merged.pop(key, None)
                    continue
                validate_key(key, merged)
                merged[key] = value

            if merged == current.entries:
                return current

            try:
                resource_version = self.store.replace(
                    name,
                    self.labels(config.owner),
                    dump_entries(merged),
                    current.resource_version,
                )
            except ConflictError:
                self.logger.info(
                    "%s %s changed while saving; merging again (attempt %d)",
                    self.store.kind,
                    name,
                    attempt,
                )
                continue

            return Config(
                owner=config.owner,
                entries=merged,
                persisted=dict(merged),
                resource_version=resource_version,
            )

        raise ConflictError(
            f"failed to merge {self.store.kind} {name!r} after {self.max_merge_attempts} attempts"
        )


class GlobalConfigRepository(_ConfigRepository):
    """The ecosystem-wide ``global-config`` ConfigMap."""

    config_type = "global-config"

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(ConfigMapStore(core_api, namespace), logger=logger)

    def resource_name(self, owner: str) -> str:
        return GLOBAL_CONFIG_NAME

    def get(self) -> Config:
        return self._get(GLOBAL_OWNER)

    def create(self, config: Config) -> Config:
        return self._create(config)

    def save_or_merge(self, config: Config) -> Config:
        return self._save_or_merge(config)


class DoguConfigRepository(_ConfigRepository):
    """Per-dogu configuration stored in ``<dogu>-config`` ConfigMaps."""

    config_type = "dogu-config"

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(ConfigMapStore(core_api, namespace), logger=logger)

    def labels(self, owner: str) -> dict[str, str]:
        return {**super().labels(owner), DOGU_NAME_LABEL: owner}

    def get(self, dogu_name: str) -> Config:
        return self._get(dogu_name)

    def create(self, config: Config) -> Config:
        return self._create(config)

    def save_or_merge(self, config: Config) -> Config:
        return self._save_or_merge(config)


class SensitiveDoguConfigRepository(DoguConfigRepository):
    """Per-dogu secrets stored in ``<dogu>-config`` Secrets."""

    config_type = "sensitive-config"

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: str,
        logger: logging.Logger | None = None,
    ) -> None:
        _ConfigRepository.__init__(self, SecretStore(core_api, namespace), logger=logger)
