"""Post-bootstrap hooks run by the planner after every component is installed."""

import os
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Union

from cluster_tests.bootstrap.exceptions import PlanParseError
from cluster_tests.config import EDGE_NODE_PROVIDER_VEN, HarnessConfig
from cluster_tests.logging_config import configure_module_logging

if TYPE_CHECKING:
    from cluster_tests.bootstrap.planner import BootstrapPlanner

logger = configure_module_logging("hooks")

VEN_ENV_FILE = ".ven.env"


def load_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """
    Parse a ``KEY=VALUE`` env file.

    Blank lines and ``#`` comments are ignored, an ``export`` prefix is
    allowed and values may be shell-quoted. A missing file yields an empty
    mapping.

    Raises:
        PlanParseError: If a line is not a KEY=VALUE assignment
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Env file not found: {path}")
        return {}

    values = {}
    for lineno, raw in enumerate(path.read_text().splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()

        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            raise PlanParseError(f"{path}:{lineno}: expected KEY=VALUE, got {raw!r}")
        try:
            parts = shlex.split(value)
        except ValueError as e:
            raise PlanParseError(f"{path}:{lineno}: {e}") from e
        values[key] = " ".join(parts)
    return values


class EdgeNodeProvisionHook:
    """Provision the virtual edge node and export its connection settings.

    The provisioning command writes ``NODEGUID`` and ``VEN_SSH_*`` values to
    an env file, which is loaded into ``os.environ`` so later test steps can
    find the node.
    """

    name = "edge-node-provision"

    def __init__(self, command: str, env_file: Union[str, Path] = VEN_ENV_FILE):
        self.command = command
        self.env_file = Path(env_file)

    def __call__(self, planner: "BootstrapPlanner") -> None:
        logger.info(f"Provisioning edge node: {self.command}")
        planner.executor.run_shell(self.command)

        if planner.executor.dry_run:
            return

        values = load_env_file(self.env_file)
        for key, value in values.items():
            logger.debug(f"Exporting {key} from {self.env_file}")
            os.environ[key] = value
        logger.info(f"Loaded {len(values)} settings from {self.env_file}")


def default_hooks(config: HarnessConfig) -> List[Callable[["BootstrapPlanner"], None]]:
    """Hooks implied by the harness configuration."""
    hooks = []
    if config.edge_node_provider == EDGE_NODE_PROVIDER_VEN and config.ven_bootstrap_cmd:
        hooks.append(EdgeNodeProvisionHook(config.ven_bootstrap_cmd))
    else:
        logger.debug("VEN_BOOTSTRAP_CMD not set, skipping edge node provisioning")
    return hooks
