"""
Bootstrap-related exceptions

Every bootstrap step is fail-fast: these exceptions propagate straight to
the caller and carry enough context (command text, component name) to
diagnose the failure from CI output alone.
"""

from typing import Optional


class BootstrapError(Exception):
    """Base exception for bootstrap operations"""

    pass


class PlanParseError(BootstrapError):
    """Plan or override document is missing, malformed or invalid"""

    pass


class ExecError(BootstrapError):
    """External command exited non-zero or could not be started"""

    def __init__(self, command: str, returncode: int, output: Optional[str] = None):
        self.command = command
        self.returncode = returncode
        self.output = output
        message = f"Command failed with exit code {returncode}: {command}"
        if output:
            message = f"{message}\n{output.strip()}"
        super().__init__(message)


class ComponentError(BootstrapError):
    """Installing a component failed"""

    def __init__(self, component: str, cause: Exception):
        self.component = component
        self.cause = cause
        super().__init__(f"Component {component} failed: {cause}")

    @property
    def command(self) -> Optional[str]:
        """Offending command text, when the failure came from a command."""
        return getattr(self.cause, "command", None)
