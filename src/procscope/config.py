"""Configuration system for procscope."""

import configparser
import os
import re
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import psutil
import tomlkit


@dataclass
class PathsConfig:
    """Filesystem locations."""

    proc_root: str = "/proc"
    libexec_dir: str = "/usr/libexec/procscope"  # Where the helper programs live natively
    sandbox_info: str = "/.flatpak-info"  # Present only inside the sandbox


@dataclass
class HelpersConfig:
    """Names of the helper programs and of the external escape/elevation tools."""

    kill_helper: str = "procscope-kill"
    adjust_helper: str = "procscope-adjust"
    scan_helper: str = "procscope-processes"
    spawn_escape: str = "flatpak-spawn"
    elevation_broker: str = "pkexec"


@dataclass
class SystemConfig:
    """Log file rotation."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


def _load_section(cls, data: dict):
    """Build a section dataclass from TOML data, keeping defaults for missing keys."""
    defaults = cls()
    values = {}
    for f in fields(cls):
        value = data.get(f.name, getattr(defaults, f.name))
        expected = type(getattr(defaults, f.name))
        if not isinstance(value, expected):
            raise ValueError(
                f"{cls.__name__}.{f.name} must be {expected.__name__}, got {value!r}"
            )
        values[f.name] = value
    return cls(**values)


@dataclass
class Config:
    """Main configuration container."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    helpers: HelpersConfig = field(default_factory=HelpersConfig)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "procscope"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "procscope"

    @property
    def log_path(self) -> Path:
        """JSON-lines log path."""
        return self.state_dir / "procscope.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("paths", "helpers", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values."""
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            paths=_load_section(PathsConfig, data.get("paths", {})),
            helpers=_load_section(HelpersConfig, data.get("helpers", {})),
            system=_load_section(SystemConfig, data.get("system", {})),
        )


# =============================================================================
# Runtime context
# =============================================================================


@dataclass(frozen=True)
class ProcPatterns:
    """Compiled matchers for /proc and fdinfo text."""

    uid: re.Pattern = re.compile(r"Uid:\s*(\d+)")
    affinity: re.Pattern = re.compile(r"Cpus_allowed:\s*([0-9A-Fa-f,]+)")
    swap: re.Pattern = re.compile(r"VmSwap:\s*(\d+)\s*kB")
    io_read: re.Pattern = re.compile(r"read_bytes:\s*(\d+)")
    io_write: re.Pattern = re.compile(r"write_bytes:\s*(\d+)")
    drm_kib: re.Pattern = re.compile(r"(\d+)\s*KiB")
    drm_ns: re.Pattern = re.compile(r"(\d+)\s*ns")
    drm_units: re.Pattern = re.compile(r"(\d+)")


def read_sandbox_app_path(info_path: Path) -> Path | None:
    """Return the host-side app install path from a Flatpak info file."""
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read(info_path)
    except configparser.Error:
        return None
    app_path = parser.get("Instance", "app-path", fallback=None)
    return Path(app_path) if app_path else None


@dataclass(frozen=True)
class ProbeContext:
    """Values computed once at startup and shared by every collector call.

    Build it with ``ProbeContext.from_config()`` and pass it down; nothing in
    procscope recomputes these per process.
    """

    proc_root: Path
    page_size: int
    clock_ticks: int  # Clock ticks per second (USER_HZ)
    num_cpus: int
    sandboxed: bool
    app_path: Path | None  # Host path of the sandboxed app install
    libexec_dir: Path
    helpers: HelpersConfig
    patterns: ProcPatterns = field(default_factory=ProcPatterns)

    @classmethod
    def from_config(cls, config: Config) -> "ProbeContext":
        """Detect the runtime environment."""
        info_path = Path(config.paths.sandbox_info)
        sandboxed = info_path.exists()
        return cls(
            proc_root=Path(config.paths.proc_root),
            page_size=os.sysconf("SC_PAGE_SIZE"),
            clock_ticks=os.sysconf("SC_CLK_TCK"),
            num_cpus=psutil.cpu_count(logical=True) or 1,
            sandboxed=sandboxed,
            app_path=read_sandbox_app_path(info_path) if sandboxed else None,
            libexec_dir=Path(config.paths.libexec_dir),
            helpers=config.helpers,
        )

    def helper_path(self, name: str) -> str:
        """Absolute path of a helper program as seen from the host."""
        if self.sandboxed and self.app_path is not None:
            return str(self.app_path / "libexec" / "procscope" / name)
        return str(self.libexec_dir / name)
