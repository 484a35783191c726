"""
Error taxonomy for deployctl.

Every error carries the name of the resource it concerns (when known) and
the process exit code the CLI reports for it.
"""

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    """Process exit codes reported by the CLI."""

    OK = 0
    CONFIG_ERROR = 2
    PROBE_FAILURE = 3
    APPLY_FAILURE = 4
    VERIFICATION_FAILURE = 5
    CANCELLED = 130


class DeployError(Exception):
    """Base class for all deployctl errors."""

    exit_code: ExitCode = ExitCode.APPLY_FAILURE

    def __init__(self, message: str, resource: Optional[str] = None):
        self.message = message
        self.resource = resource
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.resource:
            return f"{self.resource}: {self.message}"
        return self.message


class ConfigError(DeployError):
    """Invalid descriptor or settings. Not retried."""

    exit_code = ExitCode.CONFIG_ERROR


class ProbeError(DeployError):
    """State of one or more resources could not be read. Safe to re-run."""

    exit_code = ExitCode.PROBE_FAILURE


class ApplyError(DeployError):
    """A create or update step failed. Dependent steps are not attempted."""

    exit_code = ExitCode.APPLY_FAILURE


class VerificationError(DeployError):
    """Post-run checks failed. Applied resources are left in place."""

    exit_code = ExitCode.VERIFICATION_FAILURE


class GCloudError(DeployError):
    """A gcloud invocation exited non-zero."""

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        returncode: Optional[int] = None,
        stderr: str = "",
    ):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message, resource=resource)

    @property
    def not_found(self) -> bool:
        """Whether gcloud reported the target as missing."""
        text = self.stderr.lower()
        return (
            "not_found" in text
            or "not found" in text
            or "does not exist" in text
            or "was not found" in text
        )


class GCloudTimeoutError(GCloudError):
    """A gcloud invocation exceeded its timeout and was killed."""
