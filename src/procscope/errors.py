"""Exception hierarchy for procscope.

Collector failures are transient and get dropped by the scanner. Everything
else is fatal to the call that raised it.
"""


class ProcscopeError(Exception):
    """Base class for all procscope errors."""


class CollectError(ProcscopeError):
    """A single process could not be sampled."""


class ProcessNotFoundError(CollectError):
    """The process (or one of its /proc files) vanished mid-read."""


class ProcessParseError(CollectError):
    """A /proc file had an unexpected format."""


class MalformedInputError(ProcscopeError):
    """Caller supplied arguments that can never succeed."""


class PermissionDeniedError(ProcscopeError):
    """Every escalation tier was refused."""


class HelperError(ProcscopeError):
    """A helper exited with an OS error code.

    The raw code is kept so it can be shown to the user verbatim.
    """

    def __init__(self, code: int, helper: str = "") -> None:
        self.code = code
        self.helper = helper
        name = f"{helper} " if helper else ""
        super().__init__(f"{name}exited with code {code}")


class SpawnError(ProcscopeError):
    """A helper or companion program could not be started at all."""


class BridgeError(ProcscopeError):
    """The sandbox companion failed, so this tick has no process list."""


class DecodeError(BridgeError):
    """Companion output could not be decoded."""
