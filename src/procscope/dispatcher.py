"""Privileged process actions through an escalating chain of helper invocations.

Tiers, tried in order and advanced only when a helper reports EPERM:

    DIRECT            run the helper ourselves (native callers)
    SANDBOX_INDIRECT  run the helper on the host via the spawn escape
                      (sandboxed callers start here instead of DIRECT)
    ELEVATED          run the helper under the elevation broker, itself on
                      the host when sandboxed

ELEVATED may block on an interactive authentication prompt. No timeout is
applied; a caller that gives up waiting simply abandons the call.

Actions target a raw pid. Nothing checks that the pid still names the
process sampled earlier.
"""

from enum import Enum

import structlog

from procscope.config import ProbeContext
from procscope.errors import HelperError, MalformedInputError, PermissionDeniedError
from procscope.spawn import HostSpawner

log = structlog.get_logger()

EXIT_OK = 0
EXIT_PERMISSION_DENIED = 1  # EPERM
EXIT_NOT_FOUND = 3  # ESRCH, the target is already gone

MIN_NICENESS = -20
MAX_NICENESS = 19

MIN_PID = 1


class ProcessAction(Enum):
    """Lifecycle actions the kill helper understands."""

    TERM = "TERM"
    STOP = "STOP"
    CONT = "CONT"
    KILL = "KILL"


class EscalationTier(Enum):
    DIRECT = "direct"
    SANDBOX_INDIRECT = "sandbox-indirect"
    ELEVATED = "elevated"


def _check_pid(pid: int) -> None:
    # 0 and negatives would address the helper's own process group
    if pid < MIN_PID:
        raise MalformedInputError(f"pid must be a positive process id, got {pid}")


def affinity_mask(affinity) -> str:
    """One character per logical CPU, '1' where the CPU is allowed."""
    return "".join("1" if enabled else "0" for enabled in affinity)


class ActionDispatcher:
    """Applies process actions, escalating privileges only on permission errors."""

    def __init__(self, ctx: ProbeContext, spawner: HostSpawner | None = None) -> None:
        self.ctx = ctx
        self.spawner = spawner or HostSpawner(ctx)

    # ─────────────────────────────────────────────────────────────
    # State machine
    # ─────────────────────────────────────────────────────────────

    def initial_tier(self) -> EscalationTier:
        return EscalationTier.SANDBOX_INDIRECT if self.ctx.sandboxed else EscalationTier.DIRECT

    @staticmethod
    def next_tier(tier: EscalationTier) -> EscalationTier | None:
        """Tier to try after a permission error, or None when none is left."""
        if tier is EscalationTier.ELEVATED:
            return None
        return EscalationTier.ELEVATED

    def _argv(self, tier: EscalationTier, helper: str, args: list[str]) -> list[str]:
        command = [self.ctx.helper_path(helper), *args]
        if tier is EscalationTier.ELEVATED:
            command = [self.ctx.helpers.elevation_broker, "--disable-internal-agent", *command]
        return command

    def _invoke(self, tier: EscalationTier, helper: str, args: list[str]) -> int:
        argv = self._argv(tier, helper, args)
        if self.ctx.sandboxed:
            result = self.spawner.run_on_host(argv)
        else:
            result = self.spawner.run(argv)
        log.info("helper_exit", helper=helper, tier=tier.value, returncode=result.returncode)
        return result.returncode

    def run_escalating(self, helper: str, args: list[str]) -> EscalationTier:
        """Run a helper through the tiers. Returns the tier that succeeded.

        Raises:
            PermissionDeniedError: Every tier reported EPERM.
            HelperError: The helper failed with any other code.
            SpawnError: The helper (or escape, or broker) could not be started.
        """
        tier: EscalationTier | None = self.initial_tier()
        while tier is not None:
            code = self._invoke(tier, helper, args)
            if code in (EXIT_OK, EXIT_NOT_FOUND):
                return tier
            if code != EXIT_PERMISSION_DENIED:
                raise HelperError(code, helper)

            following = self.next_tier(tier)
            if following is not None:
                log.info(
                    "escalation_advance", helper=helper, from_tier=tier.value, to_tier=following.value
                )
            tier = following

        raise PermissionDeniedError(f"{helper}: permission denied at every tier")

    # ─────────────────────────────────────────────────────────────
    # Actions
    # ─────────────────────────────────────────────────────────────

    def execute(self, pid: int, action: ProcessAction) -> EscalationTier:
        """Send a lifecycle action to one process.

        A target that already exited counts as success: acting on a parent
        often takes its children with it.
        """
        _check_pid(pid)
        return self.run_escalating(self.ctx.helpers.kill_helper, [str(pid), action.value])

    def adjust(self, pid: int, niceness: int, affinity) -> EscalationTier:
        """Set niceness and CPU affinity on a process and all its threads."""
        _check_pid(pid)
        affinity = tuple(affinity)
        if not MIN_NICENESS <= niceness <= MAX_NICENESS:
            raise MalformedInputError(
                f"niceness must be within {MIN_NICENESS}..{MAX_NICENESS}, got {niceness}"
            )
        if not any(affinity):
            raise MalformedInputError("affinity must enable at least one CPU")

        return self.run_escalating(
            self.ctx.helpers.adjust_helper,
            [str(pid), str(niceness), affinity_mask(affinity)],
        )
