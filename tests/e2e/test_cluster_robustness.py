"""
Robustness tests: a cluster survives losing its connect agent.

The connect agent in the workload cluster is broken by pointing its image
at a registry that does not exist, then restored. Cluster-manager must report
the lost connection and mark the cluster ready again afterwards. Run after
``invoke env.bootstrap`` with the connect gateway forwarded to
CONNECT_GATEWAY_URL.
"""

import pytest

from cluster_tests.bootstrap.executor import CommandExecutor
from cluster_tests.client import build_cluster_spec
from cluster_tests.kube import (
    INTEL_MACHINE_RESOURCE,
    find_workload,
    has_resources,
    is_cluster_ready,
    is_connection_lost,
    point_kubeconfig_at,
    resource_exists,
    wait_until,
)

pytestmark = [pytest.mark.e2e, pytest.mark.slow]

BROKEN_IMAGE = "invalid.invalid/connect-agent:does-not-exist"


@pytest.fixture(scope="module")
def cluster(config, client, template):
    """Create the cluster once for the module and delete it afterwards."""
    client.create_cluster(
        build_cluster_spec(config.cluster_name, template, config.node_guid)
    )
    yield config.cluster_name

    if config.skip_delete_cluster:
        return
    client.delete_cluster(config.cluster_name)
    wait_until(
        lambda: not resource_exists("cluster", config.cluster_name, config.namespace),
        timeout=60,
        interval=5,
        description=f"cluster {config.cluster_name} deletion",
    )


@pytest.fixture(scope="module")
def workload_kubeconfig(config, client, cluster, tmp_path_factory):
    """Kubeconfig of the workload cluster, routed through the connect gateway."""
    text = point_kubeconfig_at(
        client.get_kubeconfig(cluster), config.connect_gateway_url
    )
    path = tmp_path_factory.mktemp("workload") / "kubeconfig.yaml"
    path.write_text(text)
    return str(path)


@pytest.fixture(scope="module")
def connect_agent(workload_kubeconfig):
    """The connect-agent workload, restored to its image on teardown."""
    workload = find_workload("connect-agent", workload_kubeconfig)
    if workload is None:
        pytest.fail("connect-agent workload not found in the workload cluster")
    image = workload.image()
    yield workload, image

    if workload.image() != image:
        workload.set_image(image)


class TestConnectAgentRobustness:
    """Connection loss and recovery, in order."""

    def test_robustness_cluster_becomes_active(self, config, cluster):
        wait_until(
            lambda: has_resources(INTEL_MACHINE_RESOURCE, config.namespace),
            timeout=60,
            interval=5,
            description=f"IntelMachine in {config.namespace}",
        )
        wait_until(
            lambda: is_cluster_ready(cluster, config.namespace),
            timeout=300,
            interval=10,
            description=f"cluster {cluster} components",
        )

    def test_robustness_gateway_reaches_workload_cluster(self, workload_kubeconfig):
        result = CommandExecutor().run(
            ["kubectl", "--kubeconfig", workload_kubeconfig, "get", "pods", "-A"],
            capture=True,
        )
        assert result.stdout

    def test_robustness_connection_lost_detected(
        self, config, client, cluster, connect_agent
    ):
        workload, _ = connect_agent
        workload.set_image(BROKEN_IMAGE)

        wait_until(
            lambda: is_connection_lost(cluster, config.namespace),
            timeout=600,
            interval=10,
            description=f"lost connection to {cluster}",
        )
        status = client.get_cluster(cluster).get("providerStatus") or {}
        assert "connect agent is disconnected" in status.get("message", "")

    def test_robustness_recovers_when_agent_restored(
        self, config, cluster, connect_agent
    ):
        workload, image = connect_agent
        workload.set_image(image)

        wait_until(
            lambda: is_cluster_ready(cluster, config.namespace),
            timeout=300,
            interval=10,
            description=f"cluster {cluster} components after recovery",
        )
