"""Command line interface for the cluster-tests harness.

Usage:
    python -m cluster_tests.cli bootstrap
    python -m cluster_tests.cli bootstrap --dry-run
    python -m cluster_tests.cli cleanup
    python -m cluster_tests.cli plan
    python -m cluster_tests.cli oidc-manifest | kubectl apply -f -
    python -m cluster_tests.cli token --subject cluster-agent --aud a,b
    python -m cluster_tests.cli jwks
    python -m cluster_tests.cli serve-oidc --port 8090
"""

import argparse
import sys
from typing import List, Optional

import uvicorn
import yaml

from cluster_tests.auth.exceptions import AuthError
from cluster_tests.auth.issuer import TestIdentity
from cluster_tests.auth.oidc_mock import create_oidc_mock_app, render_oidc_mock_manifest
from cluster_tests.bootstrap.exceptions import BootstrapError
from cluster_tests.bootstrap.executor import CommandExecutor
from cluster_tests.bootstrap.models import BootstrapPlan
from cluster_tests.bootstrap.planner import BootstrapPlanner, bootstrap, resolve_plan
from cluster_tests.config import ConfigError, HarnessConfig
from cluster_tests.logging_config import (
    configure_harness_logging,
    configure_module_logging,
)

logger = configure_module_logging("cli")


def parse_audience(value: str) -> List[str]:
    """Split a comma-separated audience list, dropping empty entries."""
    return [a.strip() for a in value.split(",") if a.strip()]


def cmd_bootstrap(config: HarnessConfig, dry_run: bool, cleanup: bool) -> int:
    """Create the kind cluster and install every component."""
    report = bootstrap(
        config, executor=CommandExecutor(dry_run=dry_run), cleanup_first=cleanup
    )
    print("\n" + "=" * 70)
    print("BOOTSTRAP COMPLETE")
    print("=" * 70)
    print(f"Installed: {', '.join(report.installed) or '(none)'}")
    print(f"Skipped:   {', '.join(report.skipped) or '(none)'}")
    print(f"Duration:  {report.duration:.2f}s")
    return 0


def cmd_cleanup(config: HarnessConfig) -> int:
    """Delete the kind cluster."""
    BootstrapPlanner(BootstrapPlan(), workspace=config.workspace_dir).delete_cluster()
    return 0


def cmd_plan(config: HarnessConfig) -> int:
    """Print the merged plan."""
    plan = resolve_plan(config)
    print(yaml.safe_dump(plan.to_document(), sort_keys=False), end="")
    return 0


def cmd_oidc_manifest() -> int:
    print(render_oidc_mock_manifest(TestIdentity.shared()), end="")
    return 0


def cmd_token(subject: str, aud: str, azp: str) -> int:
    audience = parse_audience(aud)
    if not audience:
        print("Error: --aud must not be empty", file=sys.stderr)
        return 1
    print(TestIdentity.shared().issue_for_client(subject, audience, azp), end="")
    return 0


def cmd_jwks() -> int:
    print(TestIdentity.shared().jwks_json())
    return 0


def cmd_serve_oidc(host: str, port: int) -> int:
    """Serve the mock OIDC endpoints until interrupted."""
    app = create_oidc_mock_app(TestIdentity.shared())
    uvicorn.run(app, host=host, port=port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cluster-tests",
        description="Cluster orchestration integration-test harness",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m cluster_tests.cli bootstrap
  python -m cluster_tests.cli plan
  python -m cluster_tests.cli oidc-manifest
  python -m cluster_tests.cli token --subject cluster-agent
        """,
    )
    parser.add_argument(
        "--log-level", default=None, help="Log level (default: from environment)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Harness command")

    boot = subparsers.add_parser("bootstrap", help="Create and populate the cluster")
    boot.add_argument(
        "--dry-run", action="store_true", help="Log commands without running them"
    )
    boot.add_argument(
        "--no-cleanup",
        action="store_true",
        help="Do not delete an existing kind cluster first",
    )

    subparsers.add_parser("cleanup", help="Delete the kind cluster")
    subparsers.add_parser("plan", help="Print the merged bootstrap plan")
    subparsers.add_parser(
        "oidc-manifest", help="Print the mock OIDC provider Kubernetes manifest"
    )

    token = subparsers.add_parser("token", help="Print a signed test token")
    token.add_argument("--subject", default="cluster-agent", help="JWT subject")
    token.add_argument(
        "--aud",
        default="cluster-management-client",
        help="JWT audience, comma-separated",
    )
    token.add_argument(
        "--azp", default="cluster-management-client", help="JWT authorized party"
    )

    subparsers.add_parser("jwks", help="Print the public key set")

    serve = subparsers.add_parser("serve-oidc", help="Serve mock OIDC endpoints")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8090, help="Port (default: 8090)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # stdout carries manifests and tokens, so logs only go to the file
    quiet = args.command in ("plan", "oidc-manifest", "token", "jwks")
    configure_harness_logging(args.log_level, include_console=not quiet)

    try:
        config = HarnessConfig.from_env()
        if args.command == "bootstrap":
            return cmd_bootstrap(config, args.dry_run, not args.no_cleanup)
        elif args.command == "cleanup":
            return cmd_cleanup(config)
        elif args.command == "plan":
            return cmd_plan(config)
        elif args.command == "oidc-manifest":
            return cmd_oidc_manifest()
        elif args.command == "token":
            return cmd_token(args.subject, args.aud, args.azp)
        elif args.command == "jwks":
            return cmd_jwks()
        elif args.command == "serve-oidc":
            return cmd_serve_oidc(args.host, args.port)
    except (BootstrapError, AuthError, ConfigError) as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
