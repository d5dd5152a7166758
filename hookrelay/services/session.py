"""Process-wide agent session.

A session owns the interception engine, the immutable set of hook
descriptors built at attach time, the event normalizer and the relay
channel. Hooks are installed once, on the attaching thread, before any of
them can be entered; there is no runtime add/remove afterwards.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable

from hookrelay.config import Settings, get_settings
from hookrelay.data.hook_targets import HookTarget, load_all_targets
from hookrelay.models.hooks import HookDescriptor, HookFamily
from hookrelay.services.classifier import RelevanceClassifier
from hookrelay.services.correlation import CorrelationTable
from hookrelay.services.event_normalizer import EventNormalizer
from hookrelay.services.handlers import create_handler
from hookrelay.services.interception_engine import InstallReport, InterceptionEngine
from hookrelay.services.relay import BaseTransport, RelayChannel, SocketTransport

logger = logging.getLogger(__name__)


class Session:
    """Installed hooks plus relay connection state for one process."""

    def __init__(
        self,
        settings: Settings,
        engine: InterceptionEngine,
        descriptors: Iterable[HookDescriptor],
        normalizer: EventNormalizer,
        relay: RelayChannel,
    ):
        self.settings = settings
        self.engine = engine
        self.descriptors: tuple[HookDescriptor, ...] = tuple(descriptors)
        self.normalizer = normalizer
        self.relay = relay
        self.report: InstallReport | None = None
        self._lock = threading.Lock()
        self._detached = False

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        targets: Iterable[HookTarget] | None = None,
        transport: BaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Session":
        """Build a session from settings and the hook target catalog.

        Args:
            settings: Agent settings (defaults to ``get_settings()``)
            targets: Hook targets; defaults to the catalog named by settings
            transport: Collector transport; defaults to a TCP socket
            clock: Monotonic clock for correlation pruning

        Returns:
            An unstarted Session
        """
        settings = settings or get_settings()
        if targets is None:
            targets = load_all_targets(
                include_builtin=settings.include_builtin_targets,
                extra_paths=settings.hook_target_paths,
            )
        if transport is None:
            transport = SocketTransport(
                settings.collector_host,
                settings.collector_port,
                connect_timeout=settings.relay_connect_timeout_seconds,
                send_timeout=settings.relay_send_timeout_seconds,
            )

        relay = RelayChannel(
            transport,
            queue_size=settings.relay_queue_size,
            backoff_initial=settings.relay_backoff_initial_seconds,
            backoff_max=settings.relay_backoff_max_seconds,
            max_frame_bytes=settings.relay_max_frame_bytes,
        )
        normalizer = EventNormalizer(
            RelevanceClassifier(settings.captcha_markers),
            CorrelationTable(
                window_seconds=settings.correlation_window_seconds,
                max_pending=settings.correlation_max_pending,
                clock=clock,
            ),
            capture_max_bytes=settings.capture_max_bytes,
        )
        descriptors = [
            create_handler(target, normalizer, relay.emit).descriptor()
            for target in targets
        ]
        return cls(settings, InterceptionEngine(), descriptors, normalizer, relay)

    def start(self) -> InstallReport:
        """Start the relay and install every descriptor (once)."""
        with self._lock:
            if self._detached:
                raise RuntimeError("Session was detached; create a new one")
            if self.report is not None:
                return self.report
            self.relay.start()
            self.report = self.engine.install_all(self.descriptors)

        logger.info(
            f"Session started: {len(self.report.installed)} hooks installed, "
            f"{len(self.report.skipped)} skipped"
        )
        self._check_trust_coverage()
        return self.report

    def _check_trust_coverage(self) -> None:
        trust = [
            d.name for d in self.descriptors
            if d.handler.target.family is HookFamily.TRUST_VALIDATION
        ]
        missing = [name for name in trust if name in self.report.skipped]
        if trust and missing:
            logger.warning(
                f"Trust bypass is partial: {', '.join(missing)} not hooked; "
                "those validation paths still enforce certificates"
            )

    def detach(self) -> None:
        """Restore original entry points and stop relaying. Idempotent."""
        with self._lock:
            if self._detached:
                return
            self._detached = True
        restored = self.engine.uninstall_all()
        self.relay.stop(self.settings.relay_flush_timeout_seconds)
        logger.info(f"Session detached, {restored} entry points restored")

    @property
    def detached(self) -> bool:
        return self._detached

    def status(self) -> dict:
        return {
            "detached": self._detached,
            "hooks": self.report.to_dict() if self.report else {"installed": [], "skipped": {}},
            "handler_faults": self.engine.fault_count,
            "pending_correlations": len(self.normalizer.correlations),
            "pruned_correlations": self.normalizer.correlations.pruned_total,
            "relay": self.relay.stats(),
        }
