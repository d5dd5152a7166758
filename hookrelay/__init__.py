"""
hookrelay: in-process interception agent with a real-time event relay.

Redirects trust validation, WebView script evaluation and network task
entry points of the host process, captures what flows through them, and
streams the resulting events to an out-of-process Collector.

Example
-------
>>> import hookrelay
>>> session = hookrelay.attach()  # after the target modules are loaded
>>> session.status()["relay"]["sent"]
>>> hookrelay.detach()
"""

__version__ = "0.1.0"

from hookrelay.agent import attach, detach, get_session
from hookrelay.config import Settings, get_settings
from hookrelay.exceptions import (
    CorrelationTimeout,
    HandlerFault,
    HookRelayError,
    InstallConflict,
    RelayDisconnected,
    ResolutionError,
)
from hookrelay.models.events import Event, EventType
from hookrelay.services.session import Session

__all__ = [
    "__version__",
    # Agent lifecycle
    "attach",
    "detach",
    "get_session",
    "Session",
    # Configuration
    "Settings",
    "get_settings",
    # Events
    "Event",
    "EventType",
    # Errors
    "HookRelayError",
    "ResolutionError",
    "InstallConflict",
    "HandlerFault",
    "RelayDisconnected",
    "CorrelationTimeout",
]
