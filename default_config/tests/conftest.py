from __future__ import annotations

from collections.abc import Callable

import pytest

from default_config.src.errors import NotFoundError
from default_config.src.registry import GLOBAL_OWNER, Config


class InMemoryConfigRepo:
    """Config repository double holding resources in a dict keyed by owner.

    Serves as both the global repository (``get()``) and a dogu repository
    (``get(dogu_name)``).  Setting one of the ``*_error`` attributes makes the
    matching operation raise it.
    """

    def __init__(self, resources: dict[str, dict[str, str]] | None = None) -> None:
        self.resources = {owner: dict(entries) for owner, entries in (resources or {}).items()}
        self.get_error: Exception | None = None
        self.create_error: Exception | None = None
        self.save_error: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    def get(self, owner: str = GLOBAL_OWNER) -> Config:
        self.calls.append(("get", owner))
        if self.get_error is not None:
            raise self.get_error
        if owner not in self.resources:
            raise NotFoundError(f"config of {owner} not found")
        entries = dict(self.resources[owner])
        return Config(owner=owner, entries=entries, persisted=dict(entries))

    def create(self, config: Config) -> Config:
        self.calls.append(("create", config.owner))
        if self.create_error is not None:
            raise self.create_error
        self.resources[config.owner] = dict(config.entries)
        return Config(
            owner=config.owner,
            entries=dict(config.entries),
            persisted=dict(config.entries),
        )

    def save_or_merge(self, config: Config) -> Config:
        self.calls.append(("save_or_merge", config.owner))
        if self.save_error is not None:
            raise self.save_error
        stored = self.resources.setdefault(config.owner, {})
        for key, value in config.changes().items():
            if value is None:
                stored.pop(key, None)
            else:
                stored[key] = value
        return Config(owner=config.owner, entries=dict(stored), persisted=dict(stored))

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


@pytest.fixture
def make_repo() -> Callable[..., InMemoryConfigRepo]:
    return InMemoryConfigRepo
