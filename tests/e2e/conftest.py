"""Fixtures shared by the end-to-end suites."""

import json
from pathlib import Path

import pytest

from cluster_tests.auth.issuer import TestIdentity
from cluster_tests.client import (
    BASELINE_TEMPLATE_VERSION,
    K3S_TEMPLATE_NAME,
    ClusterManagerClient,
)
from cluster_tests.config import HarnessConfig
from cluster_tests.kube import ensure_namespace, is_cluster_template_ready, wait_until

REPO_ROOT = Path(__file__).resolve().parents[2]
TEMPLATE_FILE = REPO_ROOT / "configs" / "baseline-cluster-template-k3s.json"
TEMPLATE_NAME = f"{K3S_TEMPLATE_NAME}-{BASELINE_TEMPLATE_VERSION}"


@pytest.fixture(scope="module")
def config():
    return HarnessConfig.from_env()


@pytest.fixture(scope="module")
def auth_context():
    return TestIdentity.shared().auth_context("cluster-tests")


@pytest.fixture(scope="module")
def client(config, auth_context):
    with ClusterManagerClient(
        config.cluster_manager_url, config.namespace, auth_context=auth_context
    ) as api:
        yield api


@pytest.fixture(scope="module")
def template(config, client):
    """Import the baseline K3s template and wait until it is ready."""
    ensure_namespace(config.namespace)
    client.import_template(json.loads(TEMPLATE_FILE.read_text()))
    wait_until(
        lambda: is_cluster_template_ready(config.namespace, TEMPLATE_NAME),
        timeout=60,
        interval=2,
        description=f"cluster template {TEMPLATE_NAME}",
    )
    return TEMPLATE_NAME
