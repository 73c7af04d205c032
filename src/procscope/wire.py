"""Binary encoding of snapshot lists for the sandbox companion.

Layout (little-endian, no header or version byte):

    u32 record count
    record*:
        fixed part        see _RECORD
        comm              u32 length + UTF-8
        commandline       u32 length + UTF-8
        cgroup            u32 length + UTF-8, only if FLAG_CGROUP
        affinity          u16 cpu count + packed bits, LSB first
        gpu map           u16 entries of (id string, u8 family tag, fields)
        npu map           u16 entries of (id string, u8 family tag, fields)

Caller and companion ship together, so the schema is implicit. A decoder
that meets a different layout fails with ``DecodeError`` rather than
returning a partial list.
"""

import struct
from dataclasses import astuple

from procscope.device_usage import (
    AmdgpuStats,
    AmdxdnaStats,
    GpuUsageStats,
    I915Stats,
    NpuUsageStats,
    NvidiaStats,
    V3dStats,
    XeStats,
)
from procscope.errors import DecodeError
from procscope.models import Containerization, ProcessSnapshot

_COUNT = struct.Struct("<I")
_LEN = struct.Struct("<I")
_SHORT = struct.Struct("<H")
_TAG = struct.Struct("<B")

# pid, parent_pid, uid, user_cpu_time, system_cpu_time, niceness,
# memory_usage, swap_usage, starttime, timestamp, containerization, flags,
# read_bytes, write_bytes
_RECORD = struct.Struct("<iiIQQbQQQQBBQQ")

FLAG_READ = 0x01
FLAG_WRITE = 0x02
FLAG_CGROUP = 0x04

_GPU_LAYOUTS: dict[int, tuple[type, struct.Struct]] = {
    1: (AmdgpuStats, struct.Struct("<QQQQ")),
    2: (I915Stats, struct.Struct("<QQ")),
    3: (NvidiaStats, struct.Struct("<BBBQ")),
    4: (V3dStats, struct.Struct("<QQ")),
    5: (XeStats, struct.Struct("<QQQQQ")),
}
_NPU_LAYOUTS: dict[int, tuple[type, struct.Struct]] = {
    1: (AmdxdnaStats, struct.Struct("<QQ")),
}

_GPU_TAGS = {cls: tag for tag, (cls, _) in _GPU_LAYOUTS.items()}
_NPU_TAGS = {cls: tag for tag, (cls, _) in _NPU_LAYOUTS.items()}


# ─────────────────────────────────────────────────────────────────────────────
# Encoding
# ─────────────────────────────────────────────────────────────────────────────


def _pack_str(out: bytearray, value: str) -> None:
    raw = value.encode()
    out += _LEN.pack(len(raw))
    out += raw


def _pack_affinity(out: bytearray, affinity: tuple[bool, ...]) -> None:
    packed = bytearray((len(affinity) + 7) // 8)
    for i, enabled in enumerate(affinity):
        if enabled:
            packed[i // 8] |= 1 << (i % 8)
    out += _SHORT.pack(len(affinity))
    out += packed


def _pack_devices(out: bytearray, devices: dict, tags: dict, layouts: dict) -> None:
    out += _SHORT.pack(len(devices))
    for device, stats in devices.items():
        tag = tags[type(stats)]
        _pack_str(out, device)
        out += _TAG.pack(tag)
        out += layouts[tag][1].pack(*astuple(stats))


def encode_snapshots(snapshots: list[ProcessSnapshot]) -> bytes:
    """Serialize a tick's snapshots for the companion's stdout."""
    out = bytearray(_COUNT.pack(len(snapshots)))
    for s in snapshots:
        flags = 0
        if s.read_bytes is not None:
            flags |= FLAG_READ
        if s.write_bytes is not None:
            flags |= FLAG_WRITE
        if s.cgroup is not None:
            flags |= FLAG_CGROUP

        out += _RECORD.pack(
            s.pid,
            s.parent_pid,
            s.uid,
            s.user_cpu_time,
            s.system_cpu_time,
            s.niceness,
            s.memory_usage,
            s.swap_usage,
            s.starttime,
            s.timestamp,
            s.containerization.value,
            flags,
            s.read_bytes or 0,
            s.write_bytes or 0,
        )
        _pack_str(out, s.comm)
        _pack_str(out, s.commandline)
        if s.cgroup is not None:
            _pack_str(out, s.cgroup)
        _pack_affinity(out, s.affinity)
        _pack_devices(out, s.gpu_usage_stats, _GPU_TAGS, _GPU_LAYOUTS)
        _pack_devices(out, s.npu_usage_stats, _NPU_TAGS, _NPU_LAYOUTS)
    return bytes(out)


# ─────────────────────────────────────────────────────────────────────────────
# Decoding
# ─────────────────────────────────────────────────────────────────────────────


class _Reader:
    """Cursor over a byte buffer that raises DecodeError on truncation."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, size: int) -> bytes:
        if size > self.remaining:
            raise DecodeError(
                f"Truncated stream: need {size} bytes at offset {self.offset}, "
                f"have {self.remaining}"
            )
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    def string(self) -> str:
        (length,) = self.unpack(_LEN)
        raw = self.take(length)
        try:
            return raw.decode()
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 at offset {self.offset - length}") from e


def _unpack_affinity(reader: _Reader) -> tuple[bool, ...]:
    (count,) = reader.unpack(_SHORT)
    packed = reader.take((count + 7) // 8)
    return tuple(bool(packed[i // 8] & (1 << (i % 8))) for i in range(count))


def _unpack_devices(reader: _Reader, layouts: dict) -> dict:
    (count,) = reader.unpack(_SHORT)
    devices = {}
    for _ in range(count):
        device = reader.string()
        (tag,) = reader.unpack(_TAG)
        if tag not in layouts:
            raise DecodeError(f"Unknown device family tag {tag}")
        cls, layout = layouts[tag]
        try:
            devices[device] = cls(*reader.unpack(layout))
        except ValueError as e:
            raise DecodeError(f"Invalid {cls.__name__} sample: {e}") from e
    return devices


def _unpack_snapshot(reader: _Reader) -> ProcessSnapshot:
    (
        pid,
        parent_pid,
        uid,
        user_cpu_time,
        system_cpu_time,
        niceness,
        memory_usage,
        swap_usage,
        starttime,
        timestamp,
        containerization,
        flags,
        read_bytes,
        write_bytes,
    ) = reader.unpack(_RECORD)

    try:
        containerization = Containerization(containerization)
    except ValueError as e:
        raise DecodeError(f"Unknown containerization {containerization}") from e

    comm = reader.string()
    commandline = reader.string()
    cgroup = reader.string() if flags & FLAG_CGROUP else None
    affinity = _unpack_affinity(reader)
    gpu_usage_stats: dict[str, GpuUsageStats] = _unpack_devices(reader, _GPU_LAYOUTS)
    npu_usage_stats: dict[str, NpuUsageStats] = _unpack_devices(reader, _NPU_LAYOUTS)

    return ProcessSnapshot(
        pid=pid,
        parent_pid=parent_pid,
        uid=uid,
        comm=comm,
        commandline=commandline,
        user_cpu_time=user_cpu_time,
        system_cpu_time=system_cpu_time,
        niceness=niceness,
        affinity=affinity,
        starttime=starttime,
        memory_usage=memory_usage,
        swap_usage=swap_usage,
        cgroup=cgroup,
        containerization=containerization,
        read_bytes=read_bytes if flags & FLAG_READ else None,
        write_bytes=write_bytes if flags & FLAG_WRITE else None,
        timestamp=timestamp,
        gpu_usage_stats=gpu_usage_stats,
        npu_usage_stats=npu_usage_stats,
    )


def decode_snapshots(data: bytes) -> list[ProcessSnapshot]:
    """Decode the companion's output.

    Raises:
        DecodeError: Empty, truncated, malformed or trailing data.
    """
    if not data:
        raise DecodeError("Empty stream")

    reader = _Reader(data)
    (count,) = reader.unpack(_COUNT)
    snapshots = [_unpack_snapshot(reader) for _ in range(count)]
    if reader.remaining:
        raise DecodeError(f"{reader.remaining} trailing bytes after {count} records")
    return snapshots
