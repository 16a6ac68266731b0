"""
tgtkeeper Credential Command Runner

Runs the external Kerberos tools (kinit, klist) as blocking child
processes.

Contract:
- Argument vector, never a shell
- Bounded wait; on timeout the child is killed
- Exit code 0 is the only success signal
"""

from __future__ import annotations

import subprocess
from typing import Any, Callable, Optional, Sequence

import attrs
import structlog

from tgtkeeper.core.exceptions import AcquisitionError, AcquisitionTimeout
from tgtkeeper.core.types import AcquisitionCommand

logger = structlog.get_logger()


def _decode(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


@attrs.define
class CommandRunner:
    """
    Blocking runner for the Kerberos command-line tools.

    The run function is subprocess.run by default and can be replaced
    for testing; it receives the argument vector plus the keyword
    arguments subprocess.run accepts.
    """

    run_fn: Callable[..., subprocess.CompletedProcess] = subprocess.run
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def run(self, argv: Sequence[str], timeout: float) -> str:
        """
        Run a command and return its combined output.

        Raises:
            AcquisitionTimeout: the command did not exit within timeout
            AcquisitionError: spawn failure or non-zero exit
        """
        argv = list(argv)
        try:
            completed = self.run_fn(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            output = _decode(e.output)
            self._logger.error("command_timeout", argv=argv, timeout=timeout)
            raise AcquisitionTimeout(timeout, argv=argv, output=output) from e
        except OSError as e:
            self._logger.error("command_spawn_failed", argv=argv, error=str(e))
            raise AcquisitionError(
                f"Failed to start {argv[0]}: {e}", argv=argv
            ) from e

        output = _decode(completed.stdout)
        if completed.returncode != 0:
            self._logger.error(
                "command_failed",
                argv=argv,
                returncode=completed.returncode,
                output=output,
            )
            raise AcquisitionError(
                f"{argv[0]} exited with status {completed.returncode}",
                returncode=completed.returncode,
                argv=argv,
                output=output,
            )

        self._logger.debug("command_completed", argv=argv, output=output)
        return output

    def acquire(self, command: AcquisitionCommand, timeout: float) -> str:
        """Run the credential issuance command."""
        return self.run(command.argv, timeout)

    def list_tickets(
        self,
        klist_path: str,
        ccache_path: Optional[str] = None,
        timeout: float = 10.0,
    ) -> str:
        """Run klist against a credential cache and return its output."""
        argv = [str(klist_path)]
        if ccache_path:
            argv += ["-c", str(ccache_path)]
        return self.run(argv, timeout)
