"""Shared test fixtures for procscope."""

import os
import time
from pathlib import Path

import pytest
import structlog

from procscope.config import HelpersConfig, ProbeContext
from procscope.models import Containerization, ProcessSnapshot


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    """Empty fake /proc directory."""
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def ctx(proc_root: Path) -> ProbeContext:
    """Native (unsandboxed) probe context over the fake /proc."""
    return make_context(proc_root)


def make_context(proc_root: Path, **overrides) -> ProbeContext:
    """Create a ProbeContext with fixed machine constants."""
    values = dict(
        proc_root=proc_root,
        page_size=4096,
        clock_ticks=100,
        num_cpus=4,
        sandboxed=False,
        app_path=None,
        libexec_dir=Path("/usr/libexec/procscope"),
        helpers=HelpersConfig(),
    )
    values.update(overrides)
    return ProbeContext(**values)


def write_proc_entry(
    proc_root: Path,
    pid: int,
    *,
    comm: str = "bash",
    ppid: int = 1,
    uid: int = 1000,
    utime: int = 100,
    stime: int = 50,
    nice: int = 0,
    starttime: int = 5000,
    resident: int = 300,
    shared: int = 100,
    swap_kb: int | None = 8,
    cpus_allowed: str = "f",
    cmdline: bytes = b"/usr/bin/bash\0-l\0",
    cgroup: str | None = "0::/user.slice/app-myapp-1234.scope\n",
    io: str | None = "rchar: 10\nwchar: 20\nread_bytes: 4096\nwrite_bytes: 8192\n",
    sandboxed: bool = False,
) -> Path:
    """Create a /proc/<pid> directory with the files the collector reads."""
    entry = proc_root / str(pid)
    entry.mkdir()

    (entry / "stat").write_text(
        f"{pid} ({comm}) S {ppid} {pid} {pid} 0 -1 4194304 10 0 0 0 "
        f"{utime} {stime} 0 0 20 {nice} 1 0 {starttime} 1000000 300\n"
    )
    status = f"Name:\t{comm}\nUid:\t{uid}\t{uid}\t{uid}\t{uid}\n"
    if swap_kb is not None:
        status += f"VmSwap:\t{swap_kb} kB\n"
    status += f"Cpus_allowed:\t{cpus_allowed}\n"
    (entry / "status").write_text(status)
    (entry / "statm").write_text(f"1000 {resident} {shared} 10 0 200 0\n")
    (entry / "comm").write_text(f"{comm}\n")
    (entry / "cmdline").write_bytes(cmdline)
    if cgroup is not None:
        (entry / "cgroup").write_text(cgroup)
    if io is not None:
        (entry / "io").write_text(io)

    (entry / "fd").mkdir()
    (entry / "fdinfo").mkdir()
    (entry / "task").mkdir()
    (entry / "task" / str(pid)).mkdir()
    (entry / "root").mkdir()
    if sandboxed:
        (entry / "root" / ".flatpak-info").write_text("[Application]\nname=org.example.App\n")
    return entry


def add_device_fd(entry: Path, fd: int, target: str, fdinfo: str) -> None:
    """Add an open device descriptor and its fdinfo to a fake /proc entry."""
    os.symlink(target, entry / "fd" / str(fd))
    (entry / "fdinfo" / str(fd)).write_text(fdinfo)


def make_snapshot(
    pid: int = 123,
    comm: str = "test_cmd",
    user_cpu_time: int = 100,
    system_cpu_time: int = 50,
    timestamp: int | None = None,
    read_bytes: int | None = 1000,
    write_bytes: int | None = 2000,
    gpu_usage_stats: dict | None = None,
    npu_usage_stats: dict | None = None,
    **overrides,
) -> ProcessSnapshot:
    """Create a ProcessSnapshot for testing."""
    values = dict(
        pid=pid,
        parent_pid=1,
        uid=1000,
        comm=comm,
        commandline=f"/usr/bin/{comm} --flag",
        user_cpu_time=user_cpu_time,
        system_cpu_time=system_cpu_time,
        niceness=0,
        affinity=(True, True, False, True),
        starttime=5000,
        memory_usage=819200,
        swap_usage=0,
        cgroup="myapp",
        containerization=Containerization.NONE,
        read_bytes=read_bytes,
        write_bytes=write_bytes,
        timestamp=timestamp if timestamp is not None else int(time.time() * 1000),
        gpu_usage_stats=gpu_usage_stats or {},
        npu_usage_stats=npu_usage_stats or {},
    )
    values.update(overrides)
    return ProcessSnapshot(**values)


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog configuration a test (or a helper it ran) installed."""
    yield
    structlog.reset_defaults()
