"""Invoke tasks for bootstrapping, testing, linting, and formatting.

Run tasks with: invoke TASK_NAME

Environment Examples:
    invoke env.bootstrap            # Create the kind cluster and install components
    invoke env.bootstrap --dry-run  # Print the commands without running them
    invoke env.cleanup              # Delete the kind cluster
    invoke env.plan                 # Show the merged bootstrap plan
    invoke env.oidc-manifest        # Apply the mock OIDC provider to the cluster
    invoke env.smoke                # Bootstrap, then run the lifecycle tests
    invoke env.robustness           # Bootstrap, then break and restore the connect agent

Test Examples:
    invoke test              # Run all tests (e2e tests skip themselves)
    invoke test.unit        # Run unit tests only
    invoke test.coverage    # Generate HTML coverage report
    invoke test.debug       # Run with debugger on failure

Linting Examples:
    invoke lint.flake8      # Check code style with flake8
    invoke lint.black       # Format code with black
    invoke lint.black-check # Check if code needs formatting
"""

from invoke import Collection, task

CLI = "uv run python -m cluster_tests.cli"

CLUSTER_STATUS_COMMANDS = [
    "kubectl get pods -A -o wide",
    "kubectl get deployments -A -o wide",
    "kubectl get svc -A -o wide",
    "kubectl get node -o wide",
]


# Environment tasks
@task(
    help={
        "dry_run": "Log commands without running them",
        "no_cleanup": "Keep an existing kind cluster instead of deleting it first",
    }
)
def bootstrap(ctx, dry_run=False, no_cleanup=False):
    """Bootstrap the test environment before running tests."""
    cmd = f"{CLI} bootstrap"
    if dry_run:
        cmd += " --dry-run"
    if no_cleanup:
        cmd += " --no-cleanup"
    ctx.run(cmd)

    if not dry_run:
        for status_cmd in CLUSTER_STATUS_COMMANDS:
            ctx.run(status_cmd, warn=True)


@task
def cleanup(ctx):
    """Delete the kind cluster."""
    ctx.run(f"{CLI} cleanup")


@task
def plan(ctx):
    """Print the bootstrap plan with ADDITIONAL_CONFIG applied."""
    ctx.run(f"{CLI} plan")


@task
def oidc_manifest(ctx):
    """Apply the mock OIDC provider manifest to the current cluster."""
    ctx.run(f"{CLI} oidc-manifest | kubectl apply -f -")


@task(pre=[bootstrap])
def smoke(ctx):
    """Run the cluster lifecycle smoke tests against a fresh environment."""
    ctx.run(
        "uv run pytest -m e2e -k smoke",
        env={"CLUSTER_TESTS_E2E": "1", "SKIP_DELETE_CLUSTER": "false"},
    )


@task(pre=[bootstrap])
def robustness(ctx):
    """Run the connect-agent robustness tests against a fresh environment."""
    ctx.run(
        "uv run pytest -m e2e -k robustness",
        env={"CLUSTER_TESTS_E2E": "1", "SKIP_DELETE_CLUSTER": "false"},
    )


@task(pre=[bootstrap])
def lifecycle(ctx):
    """Run all end-to-end tests against a fresh environment."""
    ctx.run(
        "uv run pytest -m e2e",
        env={"CLUSTER_TESTS_E2E": "1", "SKIP_DELETE_CLUSTER": "false"},
    )


# Test tasks
@task(help={"verbose": "Show verbose output"})
def test(ctx, verbose=False):
    """Run all tests (e2e tests skip unless CLUSTER_TESTS_E2E=1)."""
    cmd = "uv run pytest"
    if verbose:
        cmd += " -v"
    ctx.run(cmd)


@task
def unit(ctx):
    """Run unit tests only."""
    ctx.run("uv run pytest -m unit")


@task
def integration(ctx):
    """Run integration tests only."""
    ctx.run("uv run pytest -m integration")


@task
def api(ctx):
    """Run API endpoint tests only."""
    ctx.run("uv run pytest -m api")


@task
def skip_slow(ctx):
    """Run tests excluding slow tests."""
    ctx.run('uv run pytest -m "not slow"')


@task(help={"file": "Specific test file to run", "name": "Test name or pattern"})
def specific(ctx, file=None, name=None):
    """Run specific test file, class, or function.

    Examples:
        invoke test.specific --file tests/unit/test_planner.py
        invoke test.specific --file tests/unit/test_planner.py --name TestProcessComponent
    """
    if not file and not name:
        print("Error: Please specify --file and/or --name")
        return

    cmd = "uv run pytest"
    if file:
        cmd += f" {file}"
    if name:
        cmd += f"::{name}"

    ctx.run(cmd)


# Coverage tasks
@task
def coverage_html(ctx):
    """Generate HTML coverage report in htmlcov/ directory."""
    ctx.run("uv run pytest --cov=cluster_tests --cov-report=html")
    print("\n✓ Coverage report generated in htmlcov/index.html")


@task
def coverage_term(ctx):
    """Display coverage report in terminal with missing lines."""
    ctx.run("uv run pytest --cov=cluster_tests --cov-report=term-missing")


@task
def coverage(ctx):
    """Generate all coverage reports (HTML, terminal, and XML)."""
    ctx.run(
        "uv run pytest --cov=cluster_tests --cov-report=html "
        "--cov-report=term-missing --cov-report=xml"
    )
    print("\n✓ Coverage reports generated:")
    print("  - htmlcov/index.html (HTML)")
    print("  - Terminal output above")
    print("  - coverage.xml (XML for CI)")


# Debug tasks
@task
def debug(ctx):
    """Run tests with debugger (pdb) on failure."""
    ctx.run("uv run pytest --pdb")


@task
def debug_logs(ctx):
    """Run tests with debug-level logging."""
    ctx.run("uv run pytest --log-cli-level=DEBUG")


@task
def ci(ctx):
    """Run all tests as if in CI (with XML coverage)."""
    ctx.run("uv run pytest --cov=cluster_tests --cov-report=xml")


# Linting tasks
@task(help={"src": "Path to check (default: cluster_tests)"})
def flake8(ctx, src="cluster_tests"):
    """Run flake8 style checker.

    Example:
        invoke lint.flake8
        invoke lint.flake8 --src cluster_tests/auth
    """
    ctx.run(f"uv run flake8 {src}")


@task(help={"check": "Check only, don't modify files"})
def black(ctx, check=False):
    """Format code with black.

    Example:
        invoke lint.black           # Format files
        invoke lint.black --check   # Check only
    """
    cmd = "uv run black cluster_tests tests tasks.py"
    if check:
        cmd += " --check"
    ctx.run(cmd)


@task
def black_check(ctx):
    """Check if code needs black formatting."""
    ctx.run("uv run black cluster_tests tests tasks.py --check")


# Namespace for the test environment
env_ns = Collection("env")
env_ns.add_task(bootstrap)
env_ns.add_task(cleanup)
env_ns.add_task(plan)
env_ns.add_task(oidc_manifest)
env_ns.add_task(smoke)
env_ns.add_task(robustness)
env_ns.add_task(lifecycle)

# Namespace for tests
test_ns = Collection("test")
test_ns.add_task(test, default=True)
test_ns.add_task(unit)
test_ns.add_task(integration)
test_ns.add_task(api)
test_ns.add_task(skip_slow)
test_ns.add_task(specific)
test_ns.add_task(coverage_html)
test_ns.add_task(coverage_term)
test_ns.add_task(coverage)
test_ns.add_task(debug)
test_ns.add_task(debug_logs)
test_ns.add_task(ci)

# Namespace for linting
lint_ns = Collection("lint")
lint_ns.add_task(flake8)
lint_ns.add_task(black)
lint_ns.add_task(black_check)

# Register namespaces at module level for invoke to discover
ns = Collection(env_ns, test_ns, lint_ns)
