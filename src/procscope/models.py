"""Data models for procscope."""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from types import MappingProxyType

from procscope.device_usage import GpuUsageStats, NpuUsageStats


class Containerization(Enum):
    """How a process is confined."""

    NONE = 0
    SANDBOXED = 1


@dataclass(frozen=True)
class ProcessSnapshot:
    """One process as seen during one tick.

    Snapshots are immutable and have no identity beyond ``pid``, which the
    kernel may reuse. Pairing two ticks' snapshots is up to the caller.
    """

    # ─────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────
    pid: int
    parent_pid: int
    uid: int
    comm: str
    commandline: str

    # ─────────────────────────────────────────────────────────────
    # CPU (clock ticks)
    # ─────────────────────────────────────────────────────────────
    user_cpu_time: int
    system_cpu_time: int
    niceness: int
    affinity: tuple[bool, ...]
    starttime: int

    # ─────────────────────────────────────────────────────────────
    # Memory (bytes)
    # ─────────────────────────────────────────────────────────────
    memory_usage: int
    swap_usage: int

    # ─────────────────────────────────────────────────────────────
    # Origin
    # ─────────────────────────────────────────────────────────────
    cgroup: str | None
    containerization: Containerization

    # ─────────────────────────────────────────────────────────────
    # I/O (cumulative bytes, None when /proc/<pid>/io is unreadable)
    # ─────────────────────────────────────────────────────────────
    read_bytes: int | None
    write_bytes: int | None

    timestamp: int  # Unix epoch milliseconds

    # ─────────────────────────────────────────────────────────────
    # Accelerators, keyed by device identifier (PCI slot)
    # ─────────────────────────────────────────────────────────────
    gpu_usage_stats: Mapping[str, GpuUsageStats] = field(default_factory=dict)
    npu_usage_stats: Mapping[str, NpuUsageStats] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Read-only views so the device maps are as immutable as the rest.
        # Snapshots stay unhashable: compare them, don't use them as keys.
        object.__setattr__(self, "gpu_usage_stats", MappingProxyType(dict(self.gpu_usage_stats)))
        object.__setattr__(self, "npu_usage_stats", MappingProxyType(dict(self.npu_usage_stats)))

    @property
    def cpu_time(self) -> int:
        """Total CPU time (user + system) in clock ticks."""
        return self.user_cpu_time + self.system_cpu_time

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dictionary."""
        return {
            "pid": self.pid,
            "parent_pid": self.parent_pid,
            "uid": self.uid,
            "comm": self.comm,
            "commandline": self.commandline,
            "user_cpu_time": self.user_cpu_time,
            "system_cpu_time": self.system_cpu_time,
            "niceness": self.niceness,
            "affinity": list(self.affinity),
            "starttime": self.starttime,
            "memory_usage": self.memory_usage,
            "swap_usage": self.swap_usage,
            "cgroup": self.cgroup,
            "containerization": self.containerization.name.lower(),
            "read_bytes": self.read_bytes,
            "write_bytes": self.write_bytes,
            "timestamp": self.timestamp,
            "gpu_usage_stats": {
                device: {"family": type(stats).__name__, **asdict(stats)}
                for device, stats in self.gpu_usage_stats.items()
            },
            "npu_usage_stats": {
                device: {"family": type(stats).__name__, **asdict(stats)}
                for device, stats in self.npu_usage_stats.items()
            },
        }
