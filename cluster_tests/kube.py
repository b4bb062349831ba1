"""
Kubernetes assertion helpers for the test suites.

All commands go through the bootstrap ``CommandExecutor`` so they are
logged the same way as bootstrap steps and fail with ``ExecError``.
"""

import os
import re
import shlex
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import yaml

from cluster_tests.bootstrap.exceptions import ExecError
from cluster_tests.bootstrap.executor import CommandExecutor
from cluster_tests.config import ConfigError, get_env
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("kube")

CLUSTER_TEMPLATE_RESOURCE = "clustertemplates.edge-orchestrator.intel.com"
INTEL_MACHINE_RESOURCE = "intelmachine"

# Server URLs cluster-manager writes into workload-cluster kubeconfigs
KUBECONFIG_SERVER_RE = re.compile(r"http://[A-Za-z0-9.-]*:8080/")


class WaitTimeoutError(Exception):
    """Condition did not become true before the deadline"""

    pass


def _executor(executor: Optional[CommandExecutor]) -> CommandExecutor:
    return executor or CommandExecutor()


def ensure_namespace(
    namespace: str, executor: Optional[CommandExecutor] = None
) -> None:
    """Create the namespace unless it already exists."""
    executor = _executor(executor)
    try:
        executor.run(["kubectl", "get", "namespace", namespace], capture=True)
        logger.debug(f"Namespace {namespace} already exists")
    except ExecError:
        executor.run(["kubectl", "create", "namespace", namespace], capture=True)
        logger.info(f"Created namespace {namespace}")


def get_resource(
    kind: str,
    name: str,
    namespace: Optional[str] = None,
    executor: Optional[CommandExecutor] = None,
) -> Dict[str, Any]:
    """Fetch one resource as a dict (``kubectl get -o yaml``)."""
    argv = ["kubectl", "get", kind, name]
    if namespace:
        argv += ["-n", namespace]
    argv += ["-o", "yaml"]
    result = _executor(executor).run(argv, capture=True)
    return yaml.safe_load(result.stdout) or {}


def resource_exists(
    kind: str,
    name: str,
    namespace: Optional[str] = None,
    executor: Optional[CommandExecutor] = None,
) -> bool:
    try:
        get_resource(kind, name, namespace, executor)
        return True
    except ExecError:
        return False


def list_resources(
    kind: str,
    namespace: Optional[str] = None,
    executor: Optional[CommandExecutor] = None,
) -> List[Dict[str, Any]]:
    """Items of ``kubectl get <kind> -o yaml``."""
    argv = ["kubectl", "get", kind]
    if namespace:
        argv += ["-n", namespace]
    argv += ["-o", "yaml"]
    result = _executor(executor).run(argv, capture=True)
    return (yaml.safe_load(result.stdout) or {}).get("items") or []


def has_resources(
    kind: str, namespace: str, executor: Optional[CommandExecutor] = None
) -> bool:
    """True when at least one resource of the kind exists in the namespace."""
    try:
        return bool(list_resources(kind, namespace, executor))
    except (ExecError, yaml.YAMLError) as e:
        logger.debug(f"Cannot list {kind} in {namespace}: {e}")
        return False


def is_cluster_template_ready(
    namespace: str, template_name: str, executor: Optional[CommandExecutor] = None
) -> bool:
    """True when the ClusterTemplate resource reports ``status.ready: true``."""
    try:
        resource = get_resource(
            CLUSTER_TEMPLATE_RESOURCE, template_name, namespace, executor
        )
    except (ExecError, yaml.YAMLError) as e:
        logger.debug(f"Cluster template {template_name} not readable: {e}")
        return False
    return (resource.get("status") or {}).get("ready") is True


def describe_cluster(
    name: str, namespace: str, executor: Optional[CommandExecutor] = None
) -> str:
    """``clusterctl describe cluster`` output with all conditions."""
    result = _executor(executor).run(
        [
            "clusterctl",
            "describe",
            "cluster",
            name,
            "-n",
            namespace,
            "--show-conditions",
            "all",
        ],
        capture=True,
    )
    return result.stdout


def all_components_ready(output: str) -> bool:
    """
    Check ``clusterctl describe`` output for components that are not ready.

    The header row is ignored. A row whose READY column is ``False``, or a
    row with a single field, means something is not ready yet.
    """
    for line in output.splitlines():
        if "NAME" in line and "READY" in line:
            continue
        fields = line.split()
        if len(fields) == 1 or (len(fields) > 1 and fields[1] == "False"):
            return False
    return True


def is_cluster_ready(
    name: str, namespace: str, executor: Optional[CommandExecutor] = None
) -> bool:
    """True when ``clusterctl describe`` reports every component ready."""
    try:
        output = describe_cluster(name, namespace, executor)
    except ExecError as e:
        logger.debug(f"Cannot describe cluster {name}: {e}")
        return False
    return all_components_ready(output)


def connection_lost(output: str) -> bool:
    """
    Check ``clusterctl describe`` output for a disconnected connect agent.

    Some component must be not ready and a condition must report the
    disconnect.
    """
    return not all_components_ready(output) and "disconnected" in output.lower()


def is_connection_lost(
    name: str, namespace: str, executor: Optional[CommandExecutor] = None
) -> bool:
    try:
        output = describe_cluster(name, namespace, executor)
    except ExecError as e:
        logger.debug(f"Cannot describe cluster {name}: {e}")
        return False
    return connection_lost(output)


def point_kubeconfig_at(kubeconfig: str, server_url: str) -> str:
    """Rewrite the cluster-manager server URLs of a kubeconfig to server_url."""
    server = server_url.rstrip("/") + "/"
    return KUBECONFIG_SERVER_RE.sub(lambda _: server, kubeconfig)


@dataclass
class Workload:
    """A DaemonSet or Deployment in a workload cluster."""

    kind: str
    namespace: str
    name: str
    kubeconfig: str

    def _kubectl(self, *args: str) -> List[str]:
        return ["kubectl", "--kubeconfig", self.kubeconfig, "-n", self.namespace, *args]

    def image(self, executor: Optional[CommandExecutor] = None) -> str:
        """Image of the first container in the pod template."""
        result = _executor(executor).run(
            self._kubectl("get", self.kind, self.name, "-o", "yaml"), capture=True
        )
        resource = yaml.safe_load(result.stdout) or {}
        pod_spec = ((resource.get("spec") or {}).get("template") or {}).get("spec")
        containers = (pod_spec or {}).get("containers") or []
        return containers[0].get("image", "") if containers else ""

    def set_image(self, image: str, executor: Optional[CommandExecutor] = None) -> None:
        """Point every container of the workload at image."""
        logger.info(f"Setting image of {self.kind}/{self.name} to {image}")
        _executor(executor).run(
            self._kubectl("set", "image", f"{self.kind}/{self.name}", f"*={image}")
        )


def find_workload(
    fragment: str, kubeconfig: str, executor: Optional[CommandExecutor] = None
) -> Optional[Workload]:
    """
    Find a workload whose name contains fragment, in any namespace.

    DaemonSets are searched before Deployments. Kinds that cannot be listed
    are skipped.
    """
    for kind in ("daemonset", "deployment"):
        argv = ["kubectl", "--kubeconfig", kubeconfig, "get", kind, "-A", "-o", "yaml"]
        try:
            result = _executor(executor).run(argv, capture=True)
        except ExecError as e:
            logger.debug(f"Cannot list {kind} resources: {e}")
            continue
        for item in (yaml.safe_load(result.stdout) or {}).get("items") or []:
            metadata = item.get("metadata") or {}
            if fragment in metadata.get("name", ""):
                return Workload(
                    kind, metadata.get("namespace", ""), metadata["name"], kubeconfig
                )
    return None


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    interval: float = 5.0,
    description: str = "condition",
) -> None:
    """
    Poll predicate until it returns True.

    Raises:
        WaitTimeoutError: If the predicate is still False after timeout seconds
    """
    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        attempt += 1
        if predicate():
            logger.info(f"{description} satisfied after {attempt} attempts")
            return
        if time.monotonic() >= deadline:
            raise WaitTimeoutError(
                f"Timed out after {timeout}s waiting for {description}"
            )
        logger.debug(f"Waiting for {description} (attempt {attempt})")
        time.sleep(interval)


@dataclass
class EdgeNode:
    """External virtual edge node reached over ssh."""

    host: str
    key: str
    user: str = "root"
    port: str = "22"

    @classmethod
    def from_env(cls) -> "EdgeNode":
        """
        Read connection settings from ``VEN_SSH_*`` variables.

        Raises:
            ConfigError: If the host or key is missing
        """
        host = get_env("VEN_SSH_HOST").strip()
        key = get_env("VEN_SSH_KEY").strip()
        if not host:
            raise ConfigError("VEN_SSH_HOST must be set when EDGE_NODE_PROVIDER=ven")
        if not key:
            raise ConfigError(
                "VEN_SSH_KEY must be set to the SSH private key path "
                "when EDGE_NODE_PROVIDER=ven"
            )
        return cls(
            host=host,
            key=key,
            user=get_env("VEN_SSH_USER").strip() or "root",
            port=get_env("VEN_SSH_PORT").strip() or "22",
        )

    def ssh_argv(self, command: str) -> list:
        # Host key checks are disabled to keep CI non-interactive
        return [
            "ssh",
            "-i",
            os.path.expanduser(self.key),
            "-p",
            self.port,
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
            f"{self.user}@{self.host}",
            "sh",
            "-lc",
            shlex.quote(command),
        ]

    def run(self, command: str, executor: Optional[CommandExecutor] = None) -> str:
        """Run a shell command on the node and return its output."""
        result = _executor(executor).run(self.ssh_argv(command), capture=True)
        return result.stdout
