"""Harness configuration sourced from the environment."""

import os

from pydantic import BaseModel, Field, field_validator

from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("config")

DEFAULT_NAMESPACE = "53cd37b9-66b2-4cc8-b080-3722ed7af64a"
DEFAULT_NODE_GUID = "12345678-1234-1234-1234-123456789012"
DEFAULT_CLUSTER_NAME = "demo-cluster"
DEFAULT_DEPENDENCIES_FILE = ".test-dependencies.yaml"
DEFAULT_WORKSPACE_DIR = "_workspace"
DEFAULT_CLUSTER_MANAGER_URL = "http://127.0.0.1:8080"
DEFAULT_CONNECT_GATEWAY_URL = "http://127.0.0.1:8081"

EDGE_NODE_PROVIDER_VEN = "ven"


class ConfigError(Exception):
    """Required configuration is missing or invalid"""

    pass


def get_env(key: str, default: str = "") -> str:
    """Return the environment variable, or default when it is not set."""
    value = os.environ.get(key)
    return default if value is None else value


class HarnessConfig(BaseModel):
    """Settings shared by the bootstrap planner, tasks and tests."""

    dependencies_file: str = Field(DEFAULT_DEPENDENCIES_FILE)
    additional_config: str = Field("", description="JSON override document")
    workspace_dir: str = Field(DEFAULT_WORKSPACE_DIR)
    skip_delete_cluster: bool = False
    namespace: str = Field(DEFAULT_NAMESPACE)
    node_guid: str = Field(DEFAULT_NODE_GUID)
    cluster_name: str = Field(DEFAULT_CLUSTER_NAME)
    cluster_manager_url: str = Field(DEFAULT_CLUSTER_MANAGER_URL)
    connect_gateway_url: str = Field(DEFAULT_CONNECT_GATEWAY_URL)
    edge_node_provider: str = Field(EDGE_NODE_PROVIDER_VEN)
    ven_bootstrap_cmd: str = ""

    @field_validator("cluster_manager_url", "connect_gateway_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return str(v).rstrip("/")

    @field_validator("edge_node_provider", mode="before")
    @classmethod
    def normalize_provider(cls, v):
        provider = str(v or "").strip().lower()
        if provider and provider != EDGE_NODE_PROVIDER_VEN:
            logger.warning(f"Unsupported edge node provider {provider!r}, using ven")
        return EDGE_NODE_PROVIDER_VEN

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Build the configuration from environment variables."""
        return cls(
            dependencies_file=get_env(
                "CLUSTER_TESTS_DEPENDENCIES", DEFAULT_DEPENDENCIES_FILE
            ),
            additional_config=get_env("ADDITIONAL_CONFIG"),
            workspace_dir=get_env("CLUSTER_TESTS_WORKSPACE", DEFAULT_WORKSPACE_DIR),
            skip_delete_cluster=get_env("SKIP_DELETE_CLUSTER") == "true",
            namespace=get_env("NAMESPACE", DEFAULT_NAMESPACE),
            node_guid=get_env("NODEGUID", DEFAULT_NODE_GUID),
            cluster_name=get_env("CLUSTER_NAME", DEFAULT_CLUSTER_NAME),
            cluster_manager_url=get_env(
                "CLUSTER_MANAGER_URL", DEFAULT_CLUSTER_MANAGER_URL
            ),
            connect_gateway_url=get_env(
                "CONNECT_GATEWAY_URL", DEFAULT_CONNECT_GATEWAY_URL
            ),
            edge_node_provider=get_env("EDGE_NODE_PROVIDER"),
            ven_bootstrap_cmd=get_env("VEN_BOOTSTRAP_CMD"),
        )
