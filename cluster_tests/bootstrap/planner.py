"""
Bootstrap Planner - plan loading, override merging and installation.

This module turns the declarative component list in
``.test-dependencies.yaml`` into a running management cluster:
- Plan loading and validation (YAML base plan, JSON override document)
- Override merging (per-field precedence, helm releases appended)
- Sequential, fail-fast installation of every component, either from
  Helm releases or by cloning and building the component from source
- Post-bootstrap hooks (e.g. provisioning an external edge node)
"""

import json
import re
import shlex
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import yaml
from pydantic import ValidationError

from cluster_tests.bootstrap.exceptions import (
    BootstrapError,
    ComponentError,
    ExecError,
    PlanParseError,
)
from cluster_tests.bootstrap.executor import CommandExecutor
from cluster_tests.bootstrap.hooks import default_hooks
from cluster_tests.bootstrap.models import BootstrapPlan, ComponentSpec
from cluster_tests.config import DEFAULT_WORKSPACE_DIR, HarnessConfig, get_env
from cluster_tests.logging_config import StructuredLogContext, configure_module_logging

logger = configure_module_logging("planner")

OVERRIDE_ENV_VAR = "ADDITIONAL_CONFIG"

# Abbreviated or full git commit hash (min 5, max 40 characters)
COMMIT_HASH_RE = re.compile(r"[0-9a-f]{5,40}")

# Provider versions the CAPI operator hooks substitute; the environment wins
PROVIDER_ENV_DEFAULTS = {
    "CAPI_OPERATOR_HELM_VERSION": "0.20.0",
    "CAPI_CORE_VERSION": "v1.9.7",
    "CAPI_K3S_VERSION": "v0.2.1",
    "CAPI_RKE2_VERSION": "v0.14.0",
    "CAPI_KUBEADM_VERSION": "v1.9.0",
    "CAPI_DOCKER_VERSION": "v1.9.7",
}
K3S_RELEASE_URL = (
    "https://github.com/k3s-io/cluster-api-k3s/releases/download/{version}/{manifest}"
)

PostBootstrapHook = Callable[["BootstrapPlanner"], None]


def _validate_plan(data, origin: str) -> BootstrapPlan:
    if data is None:
        raise PlanParseError(f"Plan document is empty: {origin}")
    if not isinstance(data, dict):
        raise PlanParseError(
            f"Plan document must be a mapping, got {type(data).__name__}: {origin}"
        )
    try:
        return BootstrapPlan.model_validate(data)
    except ValidationError as e:
        raise PlanParseError(f"Invalid plan document {origin}: {e}") from e


def parse_plan(text: str, origin: str = "<inline document>") -> BootstrapPlan:
    """
    Validate a bootstrap plan given as YAML text.

    Args:
        text: The YAML document
        origin: Label used in log and error messages

    Raises:
        PlanParseError: If the YAML is malformed or does not match the schema
    """
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PlanParseError(f"Malformed YAML in {origin}: {e}") from e

    plan = _validate_plan(data, origin)
    logger.info(f"Loaded plan with {len(plan.components)} components from {origin}")
    return plan


def load_plan(path: Union[str, Path]) -> BootstrapPlan:
    """
    Load and validate a bootstrap plan from a YAML file.

    Args:
        path: Path to the plan file

    Returns:
        Validated BootstrapPlan

    Raises:
        PlanParseError: If the file is missing, unreadable, malformed or
            does not match the plan schema
    """
    origin = str(path)
    logger.debug(f"Loading plan from file: {origin}")
    try:
        text = Path(path).read_text()
    except OSError as e:
        raise PlanParseError(f"Cannot read plan file {origin}: {e}") from e
    return parse_plan(text, origin)


def load_override(text: str) -> BootstrapPlan:
    """
    Parse a JSON override document.

    Override components may be partial; only ``name`` is required.

    Raises:
        PlanParseError: If the JSON is malformed or does not match the schema
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PlanParseError(f"Malformed override JSON: {e}") from e
    return _validate_plan(data, "<override>")


def override_from_env(env_var: str = OVERRIDE_ENV_VAR) -> Optional[BootstrapPlan]:
    """Read the override document from the environment, if one is set."""
    text = get_env(env_var).strip()
    logger.info(f"Additional config: {text or '(none)'}")
    if not text:
        return None
    return load_override(text)


def merge_component(base: ComponentSpec, override: ComponentSpec) -> ComponentSpec:
    """
    Merge one override component into its base counterpart.

    Non-empty override fields replace the base field, empty ones keep it.
    Helm releases are appended so an override can add a chart without
    dropping the defaults. Boolean flags only replace the base value when
    the override states them explicitly.
    """
    merged = base.model_copy(deep=True)

    if override.skip_component is not None:
        merged.skip_component = override.skip_component
    if override.skip_local_build is not None:
        merged.skip_local_build = override.skip_local_build

    if override.helm_repo:
        merged.helm_repo = merged.helm_repo + [
            r.model_copy(deep=True) for r in override.helm_repo
        ]
    if override.git_repo.url:
        merged.git_repo.url = override.git_repo.url
    if override.git_repo.version:
        merged.git_repo.version = override.git_repo.version
    if override.pre_install_commands:
        merged.pre_install_commands = list(override.pre_install_commands)
    if override.make_directory:
        merged.make_directory = override.make_directory
    if override.make_variables:
        merged.make_variables = list(override.make_variables)
    if override.make_targets:
        merged.make_targets = list(override.make_targets)
    if override.post_install_commands:
        merged.post_install_commands = list(override.post_install_commands)

    return merged


def merge_plans(base: BootstrapPlan, override: BootstrapPlan) -> BootstrapPlan:
    """
    Merge an override plan into the base plan.

    Neither input is modified. Override components whose name is not in the
    base plan are appended in override order.

    Args:
        base: Plan loaded from the dependencies file
        override: Partial plan, usually from the ADDITIONAL_CONFIG variable

    Returns:
        New merged BootstrapPlan
    """
    merged = base.model_copy(deep=True)

    if override.kind_cluster_config:
        merged.kind_cluster_config = override.kind_cluster_config

    for extra in override.components:
        for i, current in enumerate(merged.components):
            if current.name == extra.name:
                logger.info(f"Overriding config for component: {current.name}")
                logger.debug(f"Override: {extra.model_dump(exclude_defaults=True)}")
                merged.components[i] = merge_component(current, extra)
                break
        else:
            logger.info(f"Adding component from override: {extra.name}")
            merged.components.append(extra.model_copy(deep=True))

    return merged


def is_commit_hash(ref: str) -> bool:
    """Return True if ref looks like a git commit hash rather than a branch or tag."""
    return bool(ref) and COMMIT_HASH_RE.fullmatch(ref) is not None


def parse_make_variables(variables: Sequence[str]) -> Dict[str, str]:
    """
    Turn ``KEY=VALUE`` entries into an environment mapping.

    Values may be shell-quoted, e.g. ``HELM_VARS="--set a=b --set c=d"``.

    Raises:
        PlanParseError: If an entry is not a KEY=VALUE assignment
    """
    env = {}
    for entry in variables:
        try:
            tokens = shlex.split(entry)
        except ValueError as e:
            raise PlanParseError(f"Invalid make variable {entry!r}: {e}") from e
        for token in tokens:
            key, sep, value = token.partition("=")
            if not sep or not key:
                raise PlanParseError(
                    f"Invalid make variable {entry!r}: expected KEY=VALUE"
                )
            env[key] = value
    return env


def provider_environment() -> Dict[str, str]:
    """
    Variables exported to plan hook commands.

    Each CAPI provider version falls back to a pinned default, and the K3s
    manifest URLs follow the K3s provider version unless set explicitly.
    """
    env = {
        key: get_env(key, default) for key, default in PROVIDER_ENV_DEFAULTS.items()
    }
    for key, manifest in (
        ("CAPI_K3S_BOOTSTRAP_URL", "bootstrap-components.yaml"),
        ("CAPI_K3S_CONTROLPLANE_URL", "control-plane-components.yaml"),
    ):
        env[key] = get_env(key) or K3S_RELEASE_URL.format(
            version=env["CAPI_K3S_VERSION"], manifest=manifest
        )
    return env


@dataclass
class BootstrapReport:
    """Summary of a bootstrap run."""

    installed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)
    duration: float = 0.0


class BootstrapPlanner:
    """Executes a bootstrap plan against a freshly created kind cluster."""

    def __init__(
        self,
        plan: BootstrapPlan,
        executor: Optional[CommandExecutor] = None,
        workspace: Union[str, Path] = DEFAULT_WORKSPACE_DIR,
        hooks: Optional[Sequence[PostBootstrapHook]] = None,
    ):
        """Initialize the planner.

        Args:
            plan: Merged plan to execute
            executor: Command executor (default: a new CommandExecutor)
            workspace: Root directory for per-component working directories
            hooks: Callables run in order after every component is installed
        """
        self.plan = plan
        self.executor = executor or CommandExecutor()
        self.workspace = Path(workspace)
        self.hooks = list(hooks or [])
        self.hook_env = provider_environment()

    def create_cluster(self, config_ref: Optional[str] = None) -> None:
        """Create the kind management cluster from a topology config file."""
        config_ref = config_ref or self.plan.kind_cluster_config
        argv = ["kind", "create", "cluster"]
        if config_ref:
            argv += ["--config", config_ref]
        self.executor.run(argv)

    def delete_cluster(self) -> None:
        """Delete the kind management cluster."""
        self.executor.run(["kind", "delete", "cluster"])

    def component_dir(self, component: ComponentSpec) -> Path:
        return self.workspace / component.name

    def prepare_workspace(self, component: ComponentSpec) -> Path:
        """
        Remove and recreate the working directory of a component.

        Raises:
            PlanParseError: If the directory would fall outside the workspace
        """
        workdir = self.component_dir(component)
        root = self.workspace.resolve()
        resolved = workdir.resolve()
        if resolved == root or root not in resolved.parents:
            raise PlanParseError(
                f"Working directory of {component.name!r} is outside the "
                f"workspace {root}"
            )
        if workdir.exists():
            logger.debug(f"Removing stale workspace: {workdir}")
            shutil.rmtree(workdir)
        workdir.mkdir(parents=True)
        return workdir

    def run_commands(self, commands: Sequence[str], workdir: Path) -> None:
        """Run plan hook commands in order inside the component directory."""
        for command in commands:
            self.executor.run_shell(command, cwd=workdir, env=self.hook_env)

    def install_releases(self, component: ComponentSpec, workdir: Path) -> None:
        """Install each Helm release of the component, in list order."""
        for release in component.helm_repo:
            if release.is_placeholder:
                logger.debug(f"Skipping empty helm entry for {component.name}")
                continue

            argv = ["helm", "install", release.release_name, release.chart_ref]
            if release.namespace:
                argv += ["--namespace", release.namespace]
            if release.use_devel:
                argv.append("--devel")
            if release.version:
                argv += ["--version", release.version]
            if release.overrides:
                try:
                    argv += shlex.split(release.overrides)
                except ValueError as e:
                    raise PlanParseError(
                        f"Invalid overrides for release {release.release_name}: {e}"
                    ) from e

            self.executor.run(argv, cwd=workdir)

    def clone_source(self, component: ComponentSpec, workdir: Path) -> None:
        """Clone the component repository into its working directory.

        A shallow branch clone cannot target an arbitrary commit, so commit
        hashes are cloned first and checked out afterwards.
        """
        repo = component.git_repo
        if not repo.url:
            raise PlanParseError(f"Component {component.name} has no git-repo url")

        if is_commit_hash(repo.version):
            self.executor.run(["git", "clone", repo.url, str(workdir)])
            self.executor.run(["git", "checkout", repo.version], cwd=workdir)
        elif repo.version:
            self.executor.run(
                ["git", "clone", "--branch", repo.version, repo.url, str(workdir)]
            )
        else:
            self.executor.run(["git", "clone", repo.url, str(workdir)])

    def build_targets(self, component: ComponentSpec, workdir: Path) -> None:
        """Run each make target with the component's make variables exported."""
        make_dir = workdir / component.make_directory
        env = parse_make_variables(component.make_variables)
        for target in component.make_targets:
            self.executor.run(["make", target], cwd=make_dir, env=env)

    def process_component(self, component: ComponentSpec) -> bool:
        """
        Install a single component.

        Returns:
            True if the component was installed, False if it was skipped

        Raises:
            ComponentError: If any step of the component fails
        """
        if component.skipped:
            logger.info(f"Skipping component: {component.name}")
            return False

        context = StructuredLogContext(
            component=component.name,
            mode="helm" if component.uses_package_manager else "source",
        )
        logger.info(f"Processing component: {context}")

        try:
            workdir = self.prepare_workspace(component)
            self.run_commands(component.pre_install_commands, workdir)

            if component.uses_package_manager:
                self.install_releases(component, workdir)
            else:
                self.clone_source(component, workdir)
                self.build_targets(component, workdir)

            self.run_commands(component.post_install_commands, workdir)
        except (BootstrapError, OSError) as e:
            raise ComponentError(component.name, e) from e

        return True

    def apply(self, plan: Optional[BootstrapPlan] = None) -> BootstrapReport:
        """
        Install every component in list order, stopping at the first failure.

        Later components may depend on earlier ones, so order is preserved
        and nothing runs in parallel.
        """
        plan = plan or self.plan
        report = BootstrapReport()

        for component in plan.components:
            start = time.time()
            try:
                installed = self.process_component(component)
            except ComponentError as e:
                elapsed = time.time() - start
                logger.error(
                    f"Component {component.name} failed after {elapsed:.2f}s: {e}"
                )
                raise

            elapsed = time.time() - start
            if installed:
                report.installed.append(component.name)
                report.timings[component.name] = elapsed
                logger.info(f"Component {component.name} installed in {elapsed:.2f}s")
            else:
                report.skipped.append(component.name)

        return report

    def run(self) -> BootstrapReport:
        """Create the cluster, install all components, then run the hooks."""
        start = time.time()
        logger.info("=" * 70)
        logger.info("Bootstrapping test environment")
        logger.info("=" * 70)

        self.create_cluster()
        report = self.apply()

        for hook in self.hooks:
            name = getattr(hook, "name", type(hook).__name__)
            logger.info(f"Running post-bootstrap hook: {name}")
            hook(self)

        report.duration = time.time() - start
        logger.info(f"Bootstrap completed in {report.duration:.2f}s")
        for name, elapsed in report.timings.items():
            logger.info(f"  - {name}: {elapsed:.2f}s")
        if report.skipped:
            logger.info(f"Skipped components: {', '.join(report.skipped)}")
        return report


def resolve_plan(config: HarnessConfig) -> BootstrapPlan:
    """Load the base plan and apply the override document from the config."""
    plan = load_plan(config.dependencies_file)
    if config.additional_config.strip():
        logger.info(f"Additional config: {config.additional_config}")
        plan = merge_plans(plan, load_override(config.additional_config))
    return plan


def bootstrap(
    config: Optional[HarnessConfig] = None,
    executor: Optional[CommandExecutor] = None,
    cleanup_first: bool = True,
) -> BootstrapReport:
    """
    Bootstrap the test environment end to end.

    Args:
        config: Harness configuration (default: read from the environment)
        executor: Command executor to use
        cleanup_first: Delete any previous kind cluster before creating one

    Returns:
        BootstrapReport for the run
    """
    config = config or HarnessConfig.from_env()
    plan = resolve_plan(config)
    planner = BootstrapPlanner(
        plan,
        executor=executor,
        workspace=config.workspace_dir,
        hooks=default_hooks(config),
    )

    if cleanup_first:
        try:
            planner.delete_cluster()
        except ExecError as e:
            logger.warning(f"Cleanup of previous cluster failed, continuing: {e}")

    return planner.run()
