"""Child-process primitive shared by the dispatcher and the sandbox bridge.

Calls block until the child exits. There is no timeout: an elevation prompt
may sit waiting for the user indefinitely.
"""

import subprocess
from dataclasses import dataclass

import structlog

from procscope.config import ProbeContext
from procscope.errors import SpawnError

log = structlog.get_logger()


@dataclass
class SpawnResult:
    """Exit status and captured stdout of a finished child."""

    returncode: int
    stdout: bytes


class HostSpawner:
    """Runs programs either directly or on the host through the spawn escape."""

    def __init__(self, ctx: ProbeContext) -> None:
        self.ctx = ctx

    def host_argv(self, argv: list[str]) -> list[str]:
        """Wrap an argument vector so it runs outside the sandbox."""
        return [self.ctx.helpers.spawn_escape, "--host", *argv]

    def run(self, argv: list[str]) -> SpawnResult:
        """Run ``argv`` in the caller's own namespace."""
        try:
            completed = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,  # No tty interaction
                capture_output=True,
            )
        except OSError as e:
            raise SpawnError(f"Cannot start {argv[0]}: {e}") from e

        if completed.stderr:
            log.debug(
                "child_stderr",
                program=argv[0],
                stderr=completed.stderr.decode("utf-8", errors="replace")[:500],
            )
        return SpawnResult(returncode=completed.returncode, stdout=completed.stdout)

    def run_on_host(self, argv: list[str]) -> SpawnResult:
        """Run ``argv`` in the host namespace."""
        return self.run(self.host_argv(argv))
