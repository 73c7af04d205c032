"""CLI commands for procscope."""

import click

ACTIONS = ["TERM", "STOP", "CONT", "KILL"]


@click.group()
@click.version_option()
def main() -> None:
    """Inspect processes and apply privileged actions to them."""
    pass


def _load_context():
    """Load config, set up the JSON log and probe the runtime environment."""
    from procscope import logging as pslog
    from procscope.config import Config, ProbeContext

    try:
        config = Config.load()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    pslog.configure(config)
    ctx = ProbeContext.from_config(config)
    if ctx.sandboxed:
        pslog.sandbox_detected(str(ctx.app_path) if ctx.app_path else None)
    return ctx


@main.command()
@click.option("--interval", "-i", default=1.0, type=float, help="Seconds between the two samples")
@click.option("--limit", "-n", default=20, help="Number of processes to show")
@click.option(
    "--sort",
    "-s",
    "sort_key",
    type=click.Choice(["cpu", "memory", "gpu"]),
    default="cpu",
    help="Column to sort by",
)
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
def scan(interval: float, limit: int, sort_key: str, as_json: bool) -> None:
    """Sample all processes twice and show the busiest ones."""
    import asyncio
    import json
    import time

    from procscope import logging as pslog
    from procscope.bridge import collect_tick
    from procscope.errors import BridgeError
    from procscope.formatting import format_bytes, format_fraction, format_speed
    from procscope.usage import (
        cpu_fraction,
        gpu_fraction,
        gpu_memory_usage,
        read_speed,
        write_speed,
    )

    ctx = _load_context()

    async def two_ticks():
        first = await collect_tick(ctx)
        await asyncio.sleep(interval)
        return first, await collect_tick(ctx)

    start = time.monotonic()
    try:
        first, second = asyncio.run(two_ticks())
    except BridgeError as e:
        pslog.bridge_failed(str(e))
        raise SystemExit(1)
    pslog.scan_complete(len(second), (time.monotonic() - start - interval) * 1000)

    previous = {s.pid: s for s in first}
    rows = []
    for snapshot in second:
        old = previous.get(snapshot.pid)
        rows.append(
            {
                "pid": snapshot.pid,
                "comm": snapshot.comm,
                "app": snapshot.cgroup,
                "cpu": cpu_fraction(snapshot, old, ctx),
                "memory": snapshot.memory_usage,
                "gpu": gpu_fraction(snapshot, old),
                "gpu_memory": gpu_memory_usage(snapshot),
                "read": read_speed(snapshot, old),
                "write": write_speed(snapshot, old),
            }
        )

    rows.sort(key=lambda row: row[sort_key], reverse=True)
    rows = rows[:limit]

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    click.echo(
        f"{'PID':>7}  {'CPU':>6}  {'MEMORY':>10}  {'GPU':>6}  {'READ':>12}  {'WRITE':>12}  COMMAND"
    )
    for row in rows:
        name = row["comm"] if not row["app"] else f"{row['comm']} [{row['app']}]"
        click.echo(
            f"{row['pid']:>7}  {format_fraction(row['cpu']):>6}  "
            f"{format_bytes(row['memory']):>10}  {format_fraction(row['gpu']):>6}  "
            f"{format_speed(row['read']):>12}  {format_speed(row['write']):>12}  {name}"
        )


@main.command("signal")
@click.argument("pid", type=int)
@click.argument("action", type=click.Choice(ACTIONS, case_sensitive=False))
def signal_cmd(pid: int, action: str) -> None:
    """Send ACTION (TERM, STOP, CONT or KILL) to PID."""
    from procscope import logging as pslog
    from procscope.dispatcher import ActionDispatcher, ProcessAction
    from procscope.errors import ProcscopeError

    ctx = _load_context()
    dispatcher = ActionDispatcher(ctx)
    try:
        tier = dispatcher.execute(pid, ProcessAction(action.upper()))
    except ProcscopeError as e:
        pslog.action_failed(action.upper(), pid, str(e))
        raise SystemExit(1)

    if tier is not dispatcher.initial_tier():
        pslog.escalated(tier.value)
    pslog.action_succeeded(action.upper(), pid)


@main.command()
@click.argument("pid", type=int)
@click.option("--nice", "-n", "niceness", type=int, required=True, help="Niceness (-20..19)")
@click.option("--cpus", "-c", default=None, help="Allowed CPUs, e.g. 0,2-3 (default: all)")
def adjust(pid: int, niceness: int, cpus: str | None) -> None:
    """Set niceness and CPU affinity of PID and all its threads."""
    from procscope import logging as pslog
    from procscope.dispatcher import ActionDispatcher
    from procscope.errors import ProcscopeError
    from procscope.formatting import parse_cpu_list

    ctx = _load_context()

    if cpus is None:
        affinity = (True,) * ctx.num_cpus
    else:
        try:
            affinity = parse_cpu_list(cpus, ctx.num_cpus)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--cpus")

    dispatcher = ActionDispatcher(ctx)
    try:
        tier = dispatcher.adjust(pid, niceness, affinity)
    except ProcscopeError as e:
        pslog.action_failed("adjust", pid, str(e))
        raise SystemExit(1)

    if tier is not dispatcher.initial_tier():
        pslog.escalated(tier.value)
    pslog.action_succeeded("adjust", pid)


@main.command("init-config")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def init_config(force: bool) -> None:
    """Write the default configuration file."""
    from procscope import logging as pslog
    from procscope.config import Config

    cfg = Config()
    if cfg.config_path.exists() and not force:
        click.echo(f"Config already exists at {cfg.config_path} (use --force to overwrite)")
        return

    cfg.save()
    pslog.config_created(str(cfg.config_path))
