"""Shared fixtures and helpers for the hookrelay tests."""

import threading
import time

import pytest

from hookrelay.config import DEFAULT_CAPTCHA_MARKERS, Settings
from hookrelay.data.hook_targets.models import HookTarget
from hookrelay.exceptions import RelayDisconnected
from hookrelay.models.events import EventType
from hookrelay.models.hooks import HookFamily
from hookrelay.services.classifier import RelevanceClassifier
from hookrelay.services.correlation import CorrelationTable
from hookrelay.services.event_normalizer import EventNormalizer
from hookrelay.services.handlers import create_handler
from hookrelay.services.interception_engine import InterceptionEngine
from hookrelay.services.relay.framing import FrameDecoder
from hookrelay.services.relay.transport import BaseTransport
from hookrelay.tests import fake_host

HOST_MODULE = fake_host.__name__


def make_target(target_id: str, family: HookFamily, symbol: str, **kwargs) -> HookTarget:
    """Hook target pointing into the fake host module."""
    kwargs.setdefault("module", HOST_MODULE)
    return HookTarget(id=target_id, family=family, symbol=symbol, **kwargs)


TRUST_TARGET = make_target(
    "fake_trust",
    HookFamily.TRUST_VALIDATION,
    "TrustEvaluator.evaluate",
    mechanism="fake-evaluator",
    arguments={"context": "trust", "host": "host"},
)
SERVER_TRUST_TARGET = make_target(
    "fake_server_trust",
    HookFamily.TRUST_VALIDATION,
    "evaluate_server_trust",
    arguments={"context": 0},
)
SCRIPT_TARGET = make_target(
    "fake_evaluate_js",
    HookFamily.SCRIPT_EVALUATION,
    "WebView.evaluate_javascript",
    arguments={"content": "script", "completion": "completion"},
)
HTML_TARGET = make_target(
    "fake_load_html",
    HookFamily.CONTENT_LOAD,
    "WebView.load_html_string",
    arguments={"content": "html", "base_url": "base_url"},
)
NETWORK_TARGET = make_target(
    "fake_data_task",
    HookFamily.NETWORK_TASK,
    "URLSession.data_task",
    arguments={"request": "request", "completion": "completion_handler"},
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CollectingSink:
    """Event sink that keeps everything emitted."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __call__(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: EventType) -> list:
        return [e for e in self.events if e.type is event_type]


class RecordingTransport(BaseTransport):
    """In-memory transport with scripted connect/send failures."""

    def __init__(self, fail_connects: int = 0, fail_sends_at: set[int] | None = None):
        self.frames: list[bytes] = []
        self.fail_connects = fail_connects
        self.fail_sends_at = fail_sends_at or set()
        self.connect_attempts = 0
        self.send_attempts = 0
        self._connected = False

    def connect(self) -> None:
        self.connect_attempts += 1
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise RelayDisconnected("connection refused")
        self._connected = True

    def send(self, frame: bytes) -> None:
        self.send_attempts += 1
        if self.send_attempts in self.fail_sends_at:
            self._connected = False
            raise RelayDisconnected("connection reset")
        self.frames.append(frame)

    def close(self) -> None:
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def events(self) -> list:
        return FrameDecoder().feed(b"".join(self.frames))


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is truthy or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def normalizer(clock):
    return EventNormalizer(
        RelevanceClassifier(DEFAULT_CAPTCHA_MARKERS),
        CorrelationTable(window_seconds=60, max_pending=100, clock=clock),
    )


@pytest.fixture
def engine():
    engine = InterceptionEngine()
    yield engine
    engine.uninstall_all()


@pytest.fixture
def install(engine, normalizer, sink):
    """Install a hook target into the fake host with the standard handler."""

    def _install(target: HookTarget):
        handler = create_handler(target, normalizer, sink)
        return engine.install(handler.descriptor())

    return _install


@pytest.fixture
def settings():
    return Settings(
        include_builtin_targets=False,
        relay_backoff_initial_seconds=0.01,
        relay_backoff_max_seconds=0.05,
        relay_flush_timeout_seconds=1.0,
        correlation_window_seconds=60,
    )
