"""Shared fixtures for tests."""

import os

import pytest

from cluster_tests.auth.issuer import TestIdentity
from cluster_tests.auth.keys import EphemeralKeyProvider
from cluster_tests.bootstrap.executor import CommandExecutor
from cluster_tests.bootstrap.planner import parse_plan
from tests.fixtures.sample_data import PLAN_YAML

HARNESS_ENV_VARS = [
    "ADDITIONAL_CONFIG",
    "CLUSTER_TESTS_DEPENDENCIES",
    "CLUSTER_TESTS_WORKSPACE",
    "CLUSTER_TESTS_KEY_FILE",
    "SKIP_DELETE_CLUSTER",
    "NAMESPACE",
    "NODEGUID",
    "CLUSTER_NAME",
    "CLUSTER_MANAGER_URL",
    "CONNECT_GATEWAY_URL",
    "EDGE_NODE_PROVIDER",
    "VEN_BOOTSTRAP_CMD",
    "VEN_SSH_HOST",
    "VEN_SSH_USER",
    "VEN_SSH_PORT",
    "VEN_SSH_KEY",
]


def pytest_collection_modifyitems(config, items):
    """Skip end-to-end tests unless a live environment is requested."""
    if os.environ.get("CLUSTER_TESTS_E2E") == "1":
        return
    skip_e2e = pytest.mark.skip(reason="set CLUSTER_TESTS_E2E=1 to run e2e tests")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove harness variables inherited from the outer environment."""
    for name in HARNESS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture(scope="session")
def identity() -> TestIdentity:
    """Identity with an in-memory key, shared by the whole session."""
    return TestIdentity(key_provider=EphemeralKeyProvider())


@pytest.fixture(scope="session")
def other_identity() -> TestIdentity:
    """A second identity with an unrelated key."""
    return TestIdentity(key_provider=EphemeralKeyProvider())


@pytest.fixture
def dry_executor() -> CommandExecutor:
    return CommandExecutor(dry_run=True)


@pytest.fixture
def sample_plan():
    return parse_plan(PLAN_YAML)


@pytest.fixture
def workspace(tmp_path):
    """Per-test workspace root for component directories."""
    return tmp_path / "_workspace"
