from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import patch

from kubernetes.config.config_exception import ConfigException

from default_config.src.kube import build_core_client, load_kube_configuration


def test_load_kube_configuration_in_cluster() -> None:
    with (
        patch("default_config.src.kube.config.load_incluster_config") as mock_incluster,
        patch("default_config.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_incluster.assert_called_once()
    mock_kubeconfig.assert_not_called()


def test_load_kube_configuration_local_fallback() -> None:
    with (
        patch(
            "default_config.src.kube.config.load_incluster_config",
            side_effect=ConfigException("not in cluster"),
        ),
        patch("default_config.src.kube.config.load_kube_config") as mock_kubeconfig,
    ):
        load_kube_configuration()

    mock_kubeconfig.assert_called_once()


def test_build_core_client() -> None:
    with patch("default_config.src.kube.client") as mock_client:
        mock_client.CoreV1Api.return_value = SimpleNamespace(name="core")
        core = build_core_client()

    assert core.name == "core"
