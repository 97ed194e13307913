from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from default_config.src.dogu_config import DoguConfigWriter
from default_config.src.errors import (
    STAGE_DOGU_DEFAULTS,
    STAGE_SENSITIVE_DOGU_DEFAULTS,
    RegistryError,
    StageError,
)

DOGU_DEFAULTS = {
    "ldap": {"admin_username": "admin", "admin_member": "true"},
    "cas": {"ldap/host": "ldap", "ldap/port": "389"},
}
SENSITIVE_DEFAULTS = {"ldap": {"admin_password": "generated"}}


def test_applies_plain_and_sensitive_defaults_to_separate_stores(
    make_repo: Callable[..., Any],
) -> None:
    plain = make_repo()
    sensitive = make_repo()

    DoguConfigWriter(plain, sensitive).apply_default_dogu_config(DOGU_DEFAULTS, SENSITIVE_DEFAULTS)

    assert plain.resources == DOGU_DEFAULTS
    assert sensitive.resources == SENSITIVE_DEFAULTS
    assert plain.count("save_or_merge") == 2
    assert sensitive.count("save_or_merge") == 1


def test_existing_dogu_keys_are_kept(make_repo: Callable[..., Any]) -> None:
    plain = make_repo({"ldap": {"admin_username": "root", "admin_mail": "ops@example.org"}})
    sensitive = make_repo({"ldap": {"admin_password": "chosen-by-operator"}})

    DoguConfigWriter(plain, sensitive).apply_default_dogu_config(DOGU_DEFAULTS, SENSITIVE_DEFAULTS)

    assert plain.resources["ldap"] == {
        "admin_username": "root",
        "admin_mail": "ops@example.org",
        "admin_member": "true",
    }
    assert sensitive.resources["ldap"] == {"admin_password": "chosen-by-operator"}


def test_missing_dogu_config_is_created(make_repo: Callable[..., Any]) -> None:
    plain = make_repo({"ldap": {}})
    sensitive = make_repo()

    DoguConfigWriter(plain, sensitive).apply_default_dogu_config(DOGU_DEFAULTS, {})

    assert ("create", "cas") in plain.calls
    assert ("create", "ldap") not in plain.calls
    assert sensitive.calls == []


def test_applying_twice_is_idempotent(make_repo: Callable[..., Any]) -> None:
    plain = make_repo()
    sensitive = make_repo()
    writer = DoguConfigWriter(plain, sensitive)

    writer.apply_default_dogu_config(DOGU_DEFAULTS, SENSITIVE_DEFAULTS)
    writer.apply_default_dogu_config(DOGU_DEFAULTS, {"ldap": {"admin_password": "another"}})

    assert plain.resources == DOGU_DEFAULTS
    assert sensitive.resources == SENSITIVE_DEFAULTS


def test_plain_store_failure_aborts_before_sensitive_store(
    make_repo: Callable[..., Any],
) -> None:
    plain = make_repo()
    plain.get_error = RegistryError("timeout")
    sensitive = make_repo()

    with pytest.raises(StageError) as excinfo:
        DoguConfigWriter(plain, sensitive).apply_default_dogu_config(
            DOGU_DEFAULTS, SENSITIVE_DEFAULTS
        )

    assert excinfo.value.stage == STAGE_DOGU_DEFAULTS
    assert str(excinfo.value) == (
        "failed to apply default dogu config: error reading dogu config for dogu 'ldap': timeout"
    )
    assert sensitive.calls == []


def test_sensitive_store_failure_reports_sensitive_stage(make_repo: Callable[..., Any]) -> None:
    plain = make_repo()
    sensitive = make_repo()
    sensitive.save_error = RegistryError("forbidden")

    with pytest.raises(StageError) as excinfo:
        DoguConfigWriter(plain, sensitive).apply_default_dogu_config(
            DOGU_DEFAULTS, SENSITIVE_DEFAULTS
        )

    assert excinfo.value.stage == STAGE_SENSITIVE_DOGU_DEFAULTS
    assert "failed to save new dogu config for dogu 'ldap': forbidden" in str(excinfo.value)
    assert plain.resources == DOGU_DEFAULTS


def test_failing_dogu_stops_remaining_dogus(make_repo: Callable[..., Any]) -> None:
    plain = make_repo()
    plain.create_error = RegistryError("quota exceeded")

    with pytest.raises(StageError, match="error creating new dogu config for dogu 'ldap'"):
        DoguConfigWriter(plain, make_repo()).apply_default_dogu_config(DOGU_DEFAULTS, {})

    assert ("get", "cas") not in plain.calls


def test_invalid_key_aborts(make_repo: Callable[..., Any]) -> None:
    plain = make_repo({"cas": {"ldap": "flat"}})

    with pytest.raises(StageError, match="failed to set dogu config key 'ldap/host'"):
        DoguConfigWriter(plain, make_repo()).apply_default_dogu_config(
            {"cas": {"ldap/host": "ldap"}}, {}
        )

    assert plain.count("save_or_merge") == 0
