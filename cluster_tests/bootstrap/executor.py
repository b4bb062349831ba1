"""
Shell command executor used by the bootstrap planner and the kube helpers.

Commands are passed to subprocess as argument lists, never through a shell,
so values coming from plan documents (release names, override arguments,
registry URLs) cannot inject extra commands. Hook commands from the plan are
shell snippets by nature and are the only thing run via ``bash -c``.
"""

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from cluster_tests.bootstrap.exceptions import ExecError
from cluster_tests.logging_config import configure_module_logging

logger = configure_module_logging("executor")

PathLike = Union[str, Path]


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    argv: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    cwd: Optional[str] = None

    @property
    def command(self) -> str:
        return shlex.join(self.argv)


@dataclass
class CommandExecutor:
    """Runs external commands, failing fast on non-zero exit.

    Args:
        dry_run: Log and record commands without executing them
        extra_env: Variables added to the environment of every command
    """

    dry_run: bool = False
    extra_env: Dict[str, str] = field(default_factory=dict)
    history: List[CommandResult] = field(default_factory=list)

    def _build_env(self, env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
        if not env and not self.extra_env:
            return None
        merged = dict(os.environ)
        merged.update(self.extra_env)
        if env:
            merged.update(env)
        return merged

    def run(
        self,
        argv: Sequence[str],
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        capture: bool = False,
    ) -> CommandResult:
        """
        Run a command and wait for it to exit.

        Args:
            argv: Program and arguments
            cwd: Working directory (default: current directory)
            env: Extra environment variables layered over os.environ
            capture: Capture stdout/stderr instead of streaming them

        Returns:
            CommandResult for the finished command

        Raises:
            ExecError: If the command exits non-zero or cannot be started
        """
        argv = [str(a) for a in argv]
        command = shlex.join(argv)
        cwd_str = str(cwd) if cwd is not None else None

        if cwd_str:
            logger.info(f"Running command: {command} (cwd: {cwd_str})")
        else:
            logger.info(f"Running command: {command}")

        if self.dry_run:
            result = CommandResult(argv=argv, returncode=0, cwd=cwd_str)
            self.history.append(result)
            return result

        try:
            completed = subprocess.run(
                argv,
                cwd=cwd_str,
                env=self._build_env(env),
                capture_output=capture,
                text=True,
            )
        except FileNotFoundError as e:
            logger.error(f"Executable not found for command: {command}")
            raise ExecError(command, 127, str(e)) from e
        except OSError as e:
            logger.error(f"Failed to start command: {command}: {e}")
            raise ExecError(command, 126, str(e)) from e

        result = CommandResult(
            argv=argv,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            cwd=cwd_str,
        )
        self.history.append(result)

        if completed.returncode != 0:
            logger.error(
                f"Command exited with code {completed.returncode}: {command}"
            )
            raise ExecError(command, completed.returncode, result.stderr or None)

        return result

    def run_shell(
        self,
        script: str,
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        capture: bool = False,
    ) -> CommandResult:
        """Run a shell snippet with ``bash -c``."""
        return self.run(["bash", "-c", script], cwd=cwd, env=env, capture=capture)
