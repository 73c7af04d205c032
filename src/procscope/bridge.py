"""Process listing for sandboxed callers via the unconfined companion.

Inside the sandbox /proc only shows the sandbox's own processes, so the
companion runs a full scan on the host and streams the encoded result back.
There is no partial result here: if the companion fails, the tick fails.
"""

import asyncio

import structlog

from procscope.config import ProbeContext
from procscope.errors import BridgeError, SpawnError
from procscope.models import ProcessSnapshot
from procscope.scanner import scan_processes
from procscope.spawn import HostSpawner
from procscope.wire import decode_snapshots

log = structlog.get_logger()


class SandboxBridge:
    """Runs the companion on the host and decodes its stdout."""

    def __init__(self, ctx: ProbeContext, spawner: HostSpawner | None = None) -> None:
        self.ctx = ctx
        self.spawner = spawner or HostSpawner(ctx)

    @property
    def companion_path(self) -> str:
        return self.ctx.helper_path(self.ctx.helpers.scan_helper)

    def fetch(self) -> list[ProcessSnapshot]:
        """Run one host-side scan.

        Raises:
            BridgeError: The companion could not start or exited non-zero.
            DecodeError: Its output could not be decoded.
        """
        try:
            result = self.spawner.run_on_host([self.companion_path])
        except SpawnError as e:
            raise BridgeError(f"Cannot start companion: {e}") from e

        if result.returncode != 0:
            raise BridgeError(f"Companion exited with code {result.returncode}")

        snapshots = decode_snapshots(result.stdout)
        log.info("bridge_fetch", count=len(snapshots), size=len(result.stdout))
        return snapshots


async def collect_tick(
    ctx: ProbeContext, spawner: HostSpawner | None = None
) -> list[ProcessSnapshot]:
    """One tick's snapshot list, from the companion when sandboxed."""
    if ctx.sandboxed:
        bridge = SandboxBridge(ctx, spawner)
        return await asyncio.to_thread(bridge.fetch)
    return await scan_processes(ctx)
