"""Snapshot collector for a single /proc/<pid> entry.

Each call reads one process's subtree and returns an owned, immutable
``ProcessSnapshot``. Nothing here is cached between calls; constants such
as page size and the compiled patterns come from the ``ProbeContext``.
"""

import os
import time
from pathlib import Path

from procscope.config import ProbeContext
from procscope.devices import collect_device_stats
from procscope.errors import CollectError, ProcessNotFoundError, ProcessParseError
from procscope.models import Containerization, ProcessSnapshot


# Indices into the stat fields that follow the ")" closing the command name.
# The first of those fields is field 3 (state) of proc(5).
STAT_PARENT_PID = 1
STAT_USER_CPU_TIME = 11
STAT_SYSTEM_CPU_TIME = 12
STAT_NICE = 16
STAT_STARTTIME = 19

SANDBOX_MARKER = ".flatpak-info"


# ─────────────────────────────────────────────────────────────────────────────
# Cgroup sanitization
# ─────────────────────────────────────────────────────────────────────────────


def _hex_value(b: int) -> int:
    if 0x30 <= b <= 0x39:
        return b - 0x30
    if 0x61 <= b <= 0x66:
        return b - 0x61 + 10
    if 0x41 <= b <= 0x46:
        return b - 0x41 + 10
    raise ValueError(f"not a hex digit: {chr(b)!r}")


def decode_hex_escapes(text: str) -> str | None:
    """Decode systemd ``\\xNN`` escapes. Invalid escapes or UTF-8 yield None.

    Some apps escape a '-' this way to get one into their unit name.
    """
    raw = text.encode()
    out = bytearray()
    i = 0
    while i < len(raw):
        if raw[i] == 0x5C and i + 3 < len(raw) and raw[i + 1] == 0x78:
            try:
                out.append((_hex_value(raw[i + 2]) << 4) | _hex_value(raw[i + 3]))
            except ValueError:
                return None
            i += 4
        else:
            out.append(raw[i])
            i += 1
    try:
        return out.decode()
    except UnicodeDecodeError:
        return None


def sanitize_cgroup(cgroup: str) -> str | None:
    """Derive an application id from the unified-hierarchy cgroup line.

    ``0::/user.slice/app-myapp-1234.scope`` -> ``myapp``
    ``0::/system.slice/myservice.service`` -> ``myservice``
    ``0::/init.scope`` -> None
    """
    unified = None
    for line in cgroup.splitlines():
        if line.startswith("0::"):
            unified = line[3:].strip()
            break
    if not unified:
        return None

    unit = unified.rsplit("/", 1)[-1]

    if unit.endswith(".scope"):
        segments = unit[: -len(".scope")].split("-")
        if len(segments) < 2:
            return None
        return decode_hex_escapes(segments[-2])

    if unit.endswith(".service"):
        name = unit[: -len(".service")].split("@", 1)[0]
        decoded = decode_hex_escapes(name)
        if decoded is None:
            return None
        if "dbus-:" in decoded:
            return decoded.rsplit("-", 1)[-1]
        return decoded

    return None


# ─────────────────────────────────────────────────────────────────────────────
# File helpers
# ─────────────────────────────────────────────────────────────────────────────


def _read(path: Path) -> str:
    """Read a required /proc file, mapping failures onto the collect errors."""
    try:
        return path.read_bytes().decode(errors="replace")
    except (FileNotFoundError, ProcessLookupError) as e:
        raise ProcessNotFoundError(f"{path} vanished") from e
    except OSError as e:
        raise CollectError(f"Cannot read {path}: {e}") from e


def _read_optional(path: Path) -> str | None:
    try:
        return path.read_bytes().decode(errors="replace")
    except OSError:
        return None


def _parse_int(fields: list[str], index: int, name: str) -> int:
    try:
        return int(fields[index])
    except (IndexError, ValueError) as e:
        raise ProcessParseError(f"Bad {name} in stat") from e


def parse_stat(stat: str) -> list[str]:
    """Split a stat line into the fields after the command name.

    The command name can contain spaces and parentheses, so everything up to
    the last ')' is dropped.
    """
    _, sep, tail = stat.rpartition(")")
    if not sep:
        raise ProcessParseError("stat has no ')'")
    return tail.split()


def parse_affinity(status: str, ctx: ProbeContext) -> tuple[bool, ...]:
    """Expand the ``Cpus_allowed`` hex mask into one bool per logical CPU."""
    match = ctx.patterns.affinity.search(status)
    if not match:
        return ()
    digits = match.group(1).replace(",", "")
    affinity: list[bool] = []
    for char in reversed(digits):
        value = int(char, 16)
        for bit in range(4):
            if len(affinity) < ctx.num_cpus:
                affinity.append(bool(value & (1 << bit)))
    return tuple(affinity)


def parse_memory(statm: str, page_size: int) -> int:
    """Resident minus shared pages, in bytes."""
    parts = statm.split()
    try:
        resident = int(parts[1])
        shared = int(parts[2])
    except (IndexError, ValueError) as e:
        raise ProcessParseError("Bad statm") from e
    return max(resident - shared, 0) * page_size


def _io_counter(io: str | None, pattern) -> int | None:
    if io is None:
        return None
    match = pattern.search(io)
    return int(match.group(1)) if match else None


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot
# ─────────────────────────────────────────────────────────────────────────────


def read_snapshot(proc_path: Path, ctx: ProbeContext) -> ProcessSnapshot:
    """Read one process's current state.

    Raises:
        ProcessNotFoundError: The process exited while being read.
        ProcessParseError: A /proc file had an unexpected format.
        CollectError: Any other read failure.
    """
    proc_path = Path(proc_path)
    try:
        pid = int(proc_path.name)
    except ValueError as e:
        raise ProcessParseError(f"{proc_path} is not a process entry") from e

    stat = parse_stat(_read(proc_path / "stat"))
    status = _read(proc_path / "status")
    statm = _read(proc_path / "statm")
    comm = _read(proc_path / "comm").replace("\n", "")
    commandline = _read(proc_path / "cmdline").replace("\0", " ").strip()
    io = _read_optional(proc_path / "io")
    cgroup_text = _read_optional(proc_path / "cgroup")

    p = ctx.patterns
    uid_match = p.uid.search(status)
    swap_match = p.swap.search(status)

    containerization = (
        Containerization.SANDBOXED
        if os.path.exists(proc_path / "root" / SANDBOX_MARKER)
        else Containerization.NONE
    )

    gpu_usage_stats, npu_usage_stats = collect_device_stats(proc_path, ctx)

    return ProcessSnapshot(
        pid=pid,
        parent_pid=_parse_int(stat, STAT_PARENT_PID, "parent pid"),
        uid=int(uid_match.group(1)) if uid_match else 0,
        comm=comm,
        commandline=commandline,
        user_cpu_time=_parse_int(stat, STAT_USER_CPU_TIME, "user cpu time"),
        system_cpu_time=_parse_int(stat, STAT_SYSTEM_CPU_TIME, "system cpu time"),
        niceness=_parse_int(stat, STAT_NICE, "nice"),
        affinity=parse_affinity(status, ctx),
        starttime=_parse_int(stat, STAT_STARTTIME, "starttime"),
        memory_usage=parse_memory(statm, ctx.page_size),
        swap_usage=int(swap_match.group(1)) * 1024 if swap_match else 0,
        cgroup=sanitize_cgroup(cgroup_text) if cgroup_text is not None else None,
        containerization=containerization,
        read_bytes=_io_counter(io, p.io_read),
        write_bytes=_io_counter(io, p.io_write),
        timestamp=int(time.time() * 1000),
        gpu_usage_stats=gpu_usage_stats,
        npu_usage_stats=npu_usage_stats,
    )
