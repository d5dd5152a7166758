"""Base handler abstract class shared by all hook families.

A handler encodes the semantics of one hook family. The interception
engine calls ``on_enter`` before the original runs and ``on_exit`` after it
returns; both run inline on the host thread that made the call, so they
must not block. Events leave through the ``emit`` sink, which is the relay
channel's non-blocking ``emit`` in production.

Architecture:
    Handler subclasses are created per hook target by ``create_handler()``
    and wrapped into an immutable ``HookDescriptor`` by ``descriptor()``.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar

from hookrelay.data.hook_targets.models import HookTarget
from hookrelay.models.events import Event
from hookrelay.models.hooks import CallContext, HookDescriptor, HookFamily
from hookrelay.services.event_normalizer import EventNormalizer

logger = logging.getLogger(__name__)

EventSink = Callable[[Event], None]


def read_field(source: Any, names: Iterable[str], default: Any = None) -> Any:
    """Return the first present field of a mapping or object.

    Object fields are looked up with ``inspect.getattr_static``: only stored
    values are returned, while methods, properties and other descriptors
    are skipped, so no getter of the host object runs during capture.
    """
    if source is None:
        return default
    for name in names:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
            continue
        value = inspect.getattr_static(source, name, None)
        if value is None or callable(value) or hasattr(type(value), "__get__"):
            continue
        return value
    return default


class BaseHandler(ABC):
    """Abstract base class for hook handlers."""

    families: ClassVar[tuple[HookFamily, ...]] = ()

    def __init__(self, target: HookTarget, normalizer: EventNormalizer, emit: EventSink):
        if target.family not in self.families:
            raise ValueError(
                f"{type(self).__name__} cannot handle {target.family.value} target {target.id}"
            )
        self.target = target
        self.normalizer = normalizer
        self._emit = emit

    @property
    def name(self) -> str:
        return self.target.id

    def descriptor(self) -> HookDescriptor:
        return HookDescriptor(
            name=self.target.id,
            target=self.target.spec(),
            policy=self.target.family.policy,
            handler=self,
        )

    def argument(self, context: CallContext, role: str, default: Any = None) -> Any:
        """Read the call argument mapped to ``role`` by the target definition."""
        ref = self.target.arguments.get(role)
        if ref is None:
            return default
        return context.get(ref, default)

    def emit(self, event: Event) -> None:
        self._emit(event)

    def emit_all(self, events: Iterable[Event]) -> None:
        # Events of one invocation leave in generation order
        for event in events:
            self._emit(event)

    @abstractmethod
    def on_enter(self, context: CallContext) -> None:
        """Inspect (and for some policies modify) the call before it runs."""
        pass

    def on_exit(self, context: CallContext, result: Any) -> None:
        """Inspect the original's result. No-op unless overridden."""
        return None
