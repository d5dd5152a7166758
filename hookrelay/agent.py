"""hookrelay agent entry point.

``attach()`` is called once from inside the target process, after the
modules to intercept are loaded. Repeated calls return the same session.
"""

import atexit
import logging
import threading
from collections.abc import Iterable

from hookrelay.config import Settings, get_settings
from hookrelay.data.hook_targets import HookTarget
from hookrelay.services.relay import BaseTransport
from hookrelay.services.session import Session

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

_session: Session | None = None
_session_lock = threading.Lock()
_atexit_registered = False
_log_handler: logging.Handler | None = None


def configure_logging(level: str) -> None:
    """Attach a stream handler to the ``hookrelay`` logger.

    The host's root logger is left alone.
    """
    global _log_handler
    package_logger = logging.getLogger("hookrelay")
    if _log_handler is None:
        _log_handler = logging.StreamHandler()
        _log_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(_log_handler)
        package_logger.propagate = False
    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))


def attach(
    settings: Settings | None = None,
    targets: Iterable[HookTarget] | None = None,
    transport: BaseTransport | None = None,
) -> Session:
    """Initialize the process-wide session and install its hooks."""
    global _session, _atexit_registered
    with _session_lock:
        if _session is not None:
            return _session

        settings = settings or get_settings()
        configure_logging(settings.log_level)
        logger.info("Attaching hookrelay agent...")

        session = Session.create(settings, targets=targets, transport=transport)
        session.start()
        _session = session

        if not _atexit_registered:
            atexit.register(detach)
            _atexit_registered = True
        return session


def detach() -> None:
    """Tear down the process-wide session, if any."""
    global _session
    with _session_lock:
        session, _session = _session, None
    if session is not None:
        logger.info("Detaching hookrelay agent...")
        session.detach()


def get_session() -> Session | None:
    return _session
