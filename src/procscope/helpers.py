"""Minimal helper programs run directly, on the host, or under the elevation broker.

Each helper reports through its exit status only:

    0      success
    errno  the OS error of the failing call (1 = EPERM, 3 = ESRCH, ...)
    253    the OS reported an error without an errno, or the helper crashed
    254    unknown kill action
    255    malformed arguments

``procscope-processes`` is the companion used by sandboxed callers. Its
stdout carries the encoded snapshot list, so nothing else may write there.
"""

import errno
import json
import os
import signal
import sys
from pathlib import Path

import click
import structlog

from procscope.logging import configure_helper

log = structlog.get_logger()

EXIT_UNKNOWN_ERRNO = 253
EXIT_UNKNOWN_ACTION = 254
EXIT_MALFORMED = 255

PROC_ROOT = Path("/proc")

# A single real process: 0 and negatives address process groups, and the
# kernel pid_t is a signed 32-bit int.
PID = click.IntRange(min=1, max=2**31 - 1)

SIGNALS = {
    "STOP": signal.SIGSTOP,
    "CONT": signal.SIGCONT,
    "TERM": signal.SIGTERM,
    "KILL": signal.SIGKILL,
}


class HelperCommand(click.Command):
    """Click command that exits 255 on argument errors and 253 on crashes.

    Plain Python exits with 1 on an uncaught exception, which callers would
    read as EPERM and escalate.
    """

    def main(self, *args, **kwargs):
        kwargs.pop("standalone_mode", None)
        try:
            rv = super().main(*args, standalone_mode=False, **kwargs)
        except click.ClickException as e:
            e.show()
            sys.exit(EXIT_MALFORMED)
        except click.exceptions.Abort:
            sys.exit(EXIT_MALFORMED)
        except Exception as e:
            click.echo(f"Error: {e!r}", err=True)
            sys.exit(EXIT_UNKNOWN_ERRNO)
        sys.exit(rv or 0)


def _exit_code(e: OSError) -> int:
    return e.errno if e.errno else EXIT_UNKNOWN_ERRNO


# ─────────────────────────────────────────────────────────────────────────────
# procscope-kill
# ─────────────────────────────────────────────────────────────────────────────


def send_signal(pid: int, action: str) -> int:
    """Deliver the signal named by ``action`` and return the helper exit code."""
    sig = SIGNALS.get(action)
    if sig is None:
        return EXIT_UNKNOWN_ACTION
    try:
        os.kill(pid, sig)
    except OSError as e:
        log.warning("kill_failed", pid=pid, action=action, errno=e.errno)
        return _exit_code(e)
    return 0


@click.command(cls=HelperCommand)
@click.argument("pid", type=PID)
@click.argument("action")
def kill_helper(pid: int, action: str) -> int:
    """Send STOP, CONT, TERM or KILL to PID."""
    configure_helper("procscope-kill")
    return send_signal(pid, action)


# ─────────────────────────────────────────────────────────────────────────────
# procscope-adjust
# ─────────────────────────────────────────────────────────────────────────────


def parse_mask(mask: str) -> set[int]:
    """CPU indices enabled in a '1'/'0' mask string."""
    if not mask or set(mask) - {"0", "1"}:
        raise click.BadParameter(f"not a CPU mask: {mask!r}", param_hint="MASK")
    return {i for i, c in enumerate(mask) if c == "1"}


def list_threads(pid: int) -> list[int]:
    """Thread ids under /proc/<pid>/task; empty if the process is gone."""
    try:
        names = os.listdir(PROC_ROOT / str(pid) / "task")
    except OSError:
        return []
    return [int(name) for name in names if name.isdigit()]


def _apply(tid: int, niceness: int, cpus: set[int]) -> None:
    os.sched_setaffinity(tid, cpus)
    os.setpriority(os.PRIO_PROCESS, tid, niceness)


def apply_adjustment(pid: int, niceness: int, cpus: set[int]) -> int:
    """Apply niceness and affinity to a process and its threads.

    The primary pid must succeed. Threads that exited in the meantime are
    skipped; any other per-thread failure is reported.
    """
    try:
        _apply(pid, niceness, cpus)
    except OSError as e:
        log.warning("adjust_failed", pid=pid, errno=e.errno)
        return _exit_code(e)

    for tid in list_threads(pid):
        if tid == pid:
            continue
        try:
            _apply(tid, niceness, cpus)
        except ProcessLookupError:
            continue
        except OSError as e:
            if e.errno == errno.ESRCH:
                continue
            log.warning("adjust_thread_failed", pid=pid, tid=tid, errno=e.errno)
            return _exit_code(e)
    return 0


@click.command(cls=HelperCommand, context_settings={"ignore_unknown_options": True})
@click.argument("pid", type=PID)
@click.argument("niceness", type=int)
@click.argument("mask")
def adjust_helper(pid: int, niceness: int, mask: str) -> int:
    """Set NICENESS and the CPU MASK (e.g. 1101) on PID and all its threads."""
    configure_helper("procscope-adjust")
    return apply_adjustment(pid, niceness, parse_mask(mask))


# ─────────────────────────────────────────────────────────────────────────────
# procscope-processes
# ─────────────────────────────────────────────────────────────────────────────


@click.command(cls=HelperCommand)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print readable JSON for debugging (the sandbox bridge cannot decode this)",
)
def scan_helper(as_json: bool) -> int:
    """Scan every process and write the encoded snapshot list to stdout."""
    configure_helper("procscope-processes")

    from procscope.config import Config, ProbeContext
    from procscope.scanner import scan_processes_sync
    from procscope.wire import encode_snapshots

    ctx = ProbeContext.from_config(Config.load())
    snapshots = scan_processes_sync(ctx)

    if as_json:
        payload = json.dumps([s.to_dict() for s in snapshots], indent=2).encode() + b"\n"
    else:
        payload = encode_snapshots(snapshots)

    out = sys.stdout.buffer
    out.write(payload)
    out.flush()
    return 0
