"""Exception taxonomy for the interception agent.

None of these may escape a trampoline. ``ResolutionError`` and
``InstallConflict`` are raised at install time and handled per descriptor;
``HandlerFault`` is created at the trampoline boundary when handler code
fails; ``RelayDisconnected`` and ``CorrelationTimeout`` are internal to the
relay and the correlation table.
"""


class HookRelayError(Exception):
    """Base class for all agent errors."""

    pass


class ResolutionError(HookRelayError):
    """Raised when a hook target cannot be located in the loaded modules."""

    pass


class InstallConflict(HookRelayError):
    """Raised when the target address is already redirected."""

    pass


class HandlerFault(HookRelayError):
    """Failure inside handler logic, caught at the trampoline boundary."""

    def __init__(self, hook_name: str, phase: str, cause: BaseException):
        self.hook_name = hook_name
        self.phase = phase
        self.cause = cause
        super().__init__(
            f"Handler for {hook_name} failed during {phase}: "
            f"{type(cause).__name__}: {cause}"
        )


class RelayDisconnected(HookRelayError):
    """Raised when the transport to the Collector is down."""

    pass


class CorrelationTimeout(HookRelayError):
    """Raised when a response arrives for a pruned or unknown correlation id."""

    def __init__(self, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(f"No pending api_call for correlation id {correlation_id}")


class TargetCatalogError(HookRelayError):
    """Raised when a hook target definition file fails to load."""

    pass
