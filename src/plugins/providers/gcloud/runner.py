"""
Async wrapper around the gcloud CLI.

Every call carries a timeout; a call that exceeds it is killed and raises
GCloudTimeoutError. Non-zero exits raise GCloudError with stderr attached.
"""

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from errors import GCloudError, GCloudTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured output of one gcloud invocation."""

    returncode: int
    stdout: str
    stderr: str


class GCloudRunner:
    """Runs gcloud commands scoped to one project."""

    def __init__(
        self,
        binary: str = "gcloud",
        project: Optional[str] = None,
        timeout: int = 60,
    ):
        self.binary = binary
        self.project = project
        self.timeout = timeout

    def _command(self, args: Sequence[str], fmt: Optional[str]) -> List[str]:
        cmd = [self.binary, *args, "--quiet"]
        if self.project:
            cmd.append(f"--project={self.project}")
        if fmt:
            cmd.append(f"--format={fmt}")
        return cmd

    async def run(
        self,
        args: Sequence[str],
        timeout: Optional[int] = None,
        input_text: Optional[str] = None,
        fmt: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a gcloud command and wait for it.

        Args:
            args: Arguments after the gcloud binary (e.g. ["sql", "instances", ...])
            timeout: Seconds before the process is killed (defaults to self.timeout)
            input_text: Optional text written to stdin
            fmt: Optional --format value (e.g. "json")

        Returns:
            CommandResult of a successful (zero exit) invocation.

        Raises:
            GCloudTimeoutError: If the command did not finish in time.
            GCloudError: If the command exited non-zero or could not start.
        """
        cmd = self._command(args, fmt)
        limit = timeout if timeout is not None else self.timeout
        logger.debug(f"Running: {shlex.join(_redact(cmd))}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_text is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own session so a terminal Ctrl-C does not interrupt gcloud mid-step.
                start_new_session=True,
            )
        except OSError as e:
            raise GCloudError(f"Could not run {self.binary}: {e}")

        data = input_text.encode() if input_text is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(data), limit)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise GCloudTimeoutError(
                f"'{' '.join(args[:3])}' timed out after {limit}s"
            )
        except asyncio.CancelledError:
            # Caller gave up (step timeout); don't leave gcloud running.
            try:
                proc.kill()
            finally:
                await proc.wait()
            raise

        result = CommandResult(
            returncode=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace").strip(),
        )
        if result.returncode != 0:
            raise GCloudError(
                f"'{' '.join(args[:3])}' failed with exit code "
                f"{result.returncode}: {_last_line(result.stderr)}",
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result

    async def run_json(
        self,
        args: Sequence[str],
        timeout: Optional[int] = None,
        input_text: Optional[str] = None,
    ) -> Any:
        """Run a command with --format=json and decode its output."""
        result = await self.run(args, timeout=timeout, input_text=input_text, fmt="json")
        if not result.stdout.strip():
            return None
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise GCloudError(f"'{' '.join(args[:3])}' returned invalid JSON: {e}")

    async def describe(self, args: Sequence[str]) -> Optional[Any]:
        """
        Run a describe-style command.

        Returns:
            The decoded JSON resource, or None if gcloud reports it missing.
        """
        try:
            return await self.run_json(args)
        except GCloudTimeoutError:
            raise
        except GCloudError as e:
            if e.not_found:
                return None
            raise


def _redact(cmd: Sequence[str]) -> List[str]:
    return [
        arg.split("=", 1)[0] + "=***" if "password=" in arg else arg for arg in cmd
    ]


def _last_line(text: str) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-1] if lines else "no error output"
