"""Formatting and parsing utilities for CLI output and input."""

_BYTE_UNITS = ["B", "KiB", "MiB", "GiB", "TiB"]


def format_bytes(value: int | None) -> str:
    """Format a byte count with a binary unit.

    Args:
        value: Byte count, or None if unavailable

    Returns:
        Formatted string such as "512 B" or "1.5 MiB", or "-" for None
    """
    if value is None:
        return "-"
    size = float(value)
    for unit in _BYTE_UNITS:
        if size < 1024 or unit == _BYTE_UNITS[-1]:
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{value} B"


def format_speed(value: float | None) -> str:
    """Format bytes per second, or "-" when the counter is unavailable."""
    if value is None:
        return "-"
    return f"{format_bytes(int(value))}/s"


def format_fraction(value: float | None) -> str:
    """Format a 0..1 fraction as a percentage, or "-" when unavailable."""
    if value is None:
        return "-"
    return f"{value * 100:.1f}%"


def parse_cpu_list(text: str, num_cpus: int) -> tuple[bool, ...]:
    """Parse a CPU list like "0,2-3" into one bool per logical CPU.

    Raises:
        ValueError: Malformed list or a CPU index outside 0..num_cpus-1.
    """
    enabled: set[int] = set()
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
            if start > end:
                raise ValueError(f"Descending CPU range: {part}")
            enabled.update(range(start, end + 1))
        else:
            enabled.add(int(part))

    out_of_range = sorted(i for i in enabled if not 0 <= i < num_cpus)
    if out_of_range:
        raise ValueError(f"CPU index out of range 0..{num_cpus - 1}: {out_of_range}")
    return tuple(i in enabled for i in range(num_cpus))
