from __future__ import annotations

import pytest

from default_config.src.config import JobConfig, env_int, load_job_config
from default_config.src.errors import ConfigError


def test_defaults_when_environment_is_empty() -> None:
    assert load_job_config({}) == JobConfig(
        namespace="ecosystem",
        log_level="INFO",
        wait_timeout_seconds=300.0,
        retry_interval_seconds=2.0,
        pushgateway_address=None,
    )


def test_custom_values() -> None:
    job_config = load_job_config(
        {
            "NAMESPACE": "ces",
            "LOG_LEVEL": "debug",
            "WAIT_TIMEOUT_MINUTES": "10",
            "FQDN_RETRY_INTERVAL_SECONDS": "5",
            "PUSHGATEWAY_ADDRESS": "pushgateway.monitoring:9091",
        }
    )

    assert job_config.namespace == "ces"
    assert job_config.log_level == "DEBUG"
    assert job_config.wait_timeout_seconds == 600.0
    assert job_config.retry_interval_seconds == 5.0
    assert job_config.pushgateway_address == "pushgateway.monitoring:9091"


def test_empty_pushgateway_disables_push() -> None:
    assert load_job_config({"PUSHGATEWAY_ADDRESS": ""}).pushgateway_address is None


def test_blank_wait_timeout_uses_default() -> None:
    assert load_job_config({"WAIT_TIMEOUT_MINUTES": "  "}).wait_timeout_seconds == 300.0


def test_empty_namespace_is_rejected() -> None:
    with pytest.raises(ConfigError, match="NAMESPACE must be a non-empty string"):
        load_job_config({"NAMESPACE": "  "})


@pytest.mark.parametrize(
    ("name", "raw", "message"),
    [
        ("WAIT_TIMEOUT_MINUTES", "five", "WAIT_TIMEOUT_MINUTES must be an integer, got: 'five'"),
        ("WAIT_TIMEOUT_MINUTES", "0", "WAIT_TIMEOUT_MINUTES must be >= 1, got: 0"),
        ("FQDN_RETRY_INTERVAL_SECONDS", "-2", "FQDN_RETRY_INTERVAL_SECONDS must be >= 1, got: -2"),
    ],
)
def test_invalid_integers_are_rejected(name: str, raw: str, message: str) -> None:
    with pytest.raises(ConfigError) as excinfo:
        load_job_config({name: raw})

    assert str(excinfo.value) == message


def test_env_int_without_minimum_accepts_negative_values() -> None:
    assert env_int({"X": "-3"}, "X", 1) == -3
