"""Process-set scanner: one collector call per /proc entry, run concurrently.

A partial result is the normal outcome. Processes exit between listing and
reading all the time, and other users' entries may be unreadable; those
outcomes are dropped and the next tick re-observes reality.
"""

import asyncio
import os
import time

import structlog

from procscope.collector import read_snapshot
from procscope.config import ProbeContext
from procscope.errors import CollectError
from procscope.models import ProcessSnapshot

log = structlog.get_logger()


def list_pids(ctx: ProbeContext) -> list[int]:
    """Numeric entries under the proc root."""
    return [int(name) for name in os.listdir(ctx.proc_root) if name.isdigit()]


async def scan_processes(ctx: ProbeContext) -> list[ProcessSnapshot]:
    """Snapshot every live process. Never fails because of a single process."""
    start = time.monotonic()
    pids = list_pids(ctx)

    results = await asyncio.gather(
        *(asyncio.to_thread(read_snapshot, ctx.proc_root / str(pid), ctx) for pid in pids),
        return_exceptions=True,
    )

    snapshots = []
    dropped = 0
    for result in results:
        if isinstance(result, ProcessSnapshot):
            snapshots.append(result)
        elif isinstance(result, (CollectError, OSError)):
            dropped += 1
        else:
            raise result

    elapsed_ms = (time.monotonic() - start) * 1000
    log.info(
        "scan_complete",
        count=len(snapshots),
        dropped=dropped,
        elapsed_ms=round(elapsed_ms, 1),
    )
    return snapshots


def scan_processes_sync(ctx: ProbeContext) -> list[ProcessSnapshot]:
    """Run ``scan_processes`` from synchronous code."""
    return asyncio.run(scan_processes(ctx))
