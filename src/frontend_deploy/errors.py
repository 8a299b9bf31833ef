"""Exception hierarchy for deployment failures."""
from typing import Any, Dict, List, Optional


class FrontendDeployError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(FrontendDeployError):
    """Settings are missing or inconsistent for the requested operation."""


class StackDeploymentError(FrontendDeployError):
    """A CloudFormation stack failed to reach a complete state."""

    def __init__(self, stack_name: str, message: str,
                 failed_events: Optional[List[Dict[str, Any]]] = None):
        self.stack_name = stack_name
        self.failed_events = failed_events or []
        details = "; ".join(
            f"{e.get('LogicalResourceId')}: {e.get('ResourceStatusReason')}"
            for e in self.failed_events
        )
        full_message = f"Stack {stack_name}: {message}"
        if details:
            full_message = f"{full_message} ({details})"
        super().__init__(full_message)


class DockerNotAvailableError(FrontendDeployError):
    """The docker CLI could not be found on PATH."""


class ImageBuildError(FrontendDeployError):
    """A docker build, tag or push invocation exited non-zero."""

    def __init__(self, command: List[str], returncode: int):
        self.command = command
        self.returncode = returncode
        super().__init__(f"Command failed with exit code {returncode}: {' '.join(command)}")


class RegistryAuthError(FrontendDeployError):
    """Registry credentials could not be obtained or were rejected."""
