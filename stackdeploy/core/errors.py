"""
Error taxonomy for deployment attempts.

Only ConfigurationError, the secret errors and StackApplyError abort a
deployment attempt. Everything else is captured into the DeploymentResult.
"""
from typing import Optional


class StackDeployError(Exception):
    """Base class for stackdeploy errors."""


class ConfigurationError(StackDeployError):
    """Rule table malformed or revision history unavailable."""


class FetchError(StackDeployError):
    """Prebuilt image could not be pulled; recovered by building locally."""


class RuntimeCommandError(StackDeployError):
    """A container runtime command exited non-zero or timed out."""

    def __init__(self, command: str, exit_code: Optional[int], stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        if exit_code is None:
            message = f"'{command}' timed out: {detail}"
        else:
            message = f"'{command}' exited with {exit_code}: {detail}"
        super().__init__(message)


class ServiceApplyError(StackDeployError):
    """Build/start failed for a single service."""

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(f"Failed to apply service {service}: {reason}")
        self.service = service
        self.reason = reason


class StackApplyError(StackDeployError):
    """A global step of an All plan failed; fatal to the whole attempt."""

    def __init__(self, step: str, reason: str, stack_stopped: bool) -> None:
        message = f"Full-stack {step} failed: {reason}"
        if stack_stopped:
            message += " (stack may be left stopped)"
        super().__init__(message)
        self.step = step
        self.reason = reason
        self.stack_stopped = stack_stopped


class SecretStoreError(StackDeployError):
    """Secret values could not be fetched from the secret store."""


class SecretMaterializationError(StackDeployError):
    """A runtime config file could not be snapshotted or rewritten."""

    def __init__(self, service: str, path: str, reason: str) -> None:
        super().__init__(f"Failed to materialize secrets for {service} into {path}: {reason}")
        self.service = service
        self.path = path


class SecretMaterializationWarning(UserWarning):
    """A service in the secret-bearing class declares no runtime config file."""
