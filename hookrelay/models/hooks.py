"""Hook descriptors and per-invocation call contexts."""

import inspect
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hookrelay.services.handlers.base_handler import BaseHandler

_UNSET = object()


class HookPolicy(str, Enum):
    """What a trampoline does around the original implementation."""
    PASSTHROUGH = "observe-and-passthrough"
    FORCE_RESULT = "observe-and-force-result"
    WRAP_CALLBACK = "observe-and-wrap-callback"


class HookFamily(str, Enum):
    """Families of entry points the agent knows how to handle."""
    TRUST_VALIDATION = "trust_validation"
    SCRIPT_EVALUATION = "script_evaluation"
    CONTENT_LOAD = "content_load"
    NETWORK_TASK = "network_task"

    @property
    def policy(self) -> HookPolicy:
        return FAMILY_POLICIES[self]


FAMILY_POLICIES = {
    HookFamily.TRUST_VALIDATION: HookPolicy.FORCE_RESULT,
    HookFamily.SCRIPT_EVALUATION: HookPolicy.PASSTHROUGH,
    HookFamily.CONTENT_LOAD: HookPolicy.PASSTHROUGH,
    HookFamily.NETWORK_TASK: HookPolicy.WRAP_CALLBACK,
}


@dataclass(frozen=True)
class TargetSpec:
    """Where an entry point lives.

    ``symbol`` is a dotted qualified name inside ``module`` (``func`` or
    ``Class.method``). ``pattern`` is a regular expression searched against
    every qualified name defined in the module and must match exactly one.
    """

    module: str
    symbol: str | None = None
    pattern: str | None = None

    def __post_init__(self):
        if (self.symbol is None) == (self.pattern is None):
            raise ValueError("TargetSpec needs exactly one of symbol or pattern")

    def describe(self) -> str:
        if self.symbol is not None:
            return f"{self.module}:{self.symbol}"
        return f"{self.module}:/{self.pattern}/"


@dataclass(frozen=True)
class HookDescriptor:
    """One interception target, immutable for the process lifetime."""

    name: str
    target: TargetSpec
    policy: HookPolicy
    handler: "BaseHandler"


class CallContext:
    """Arguments of a single intercepted call.

    Owned by the invoking thread. Arguments are addressed by parameter name
    or by positional index (``self`` counts as index 0 for methods). The
    untouched originals stay available in ``original_args`` and
    ``original_kwargs`` for the fail-open path.
    """

    def __init__(
        self,
        descriptor: HookDescriptor,
        args: tuple,
        kwargs: dict[str, Any],
        signature: inspect.Signature | None = None,
        qualname: str | None = None,
        original: Callable | None = None,
    ):
        self.descriptor = descriptor
        self.qualname = qualname or descriptor.target.describe()
        self.original = original
        self.original_args = tuple(args)
        self.original_kwargs = dict(kwargs)
        self.thread_id = threading.get_ident()
        self._args = list(args)
        self._kwargs = dict(kwargs)
        self._signature = signature
        self._bound: inspect.BoundArguments | None = None
        if signature is not None:
            try:
                self._bound = signature.bind(*args, **kwargs)
            except TypeError:
                # The host called with arguments the signature rejects;
                # the original will raise, we only lose named access.
                self._bound = None
        self._forced = _UNSET

    @property
    def hook_name(self) -> str:
        return self.descriptor.name

    def _param_name(self, ref: int | str) -> str | None:
        if isinstance(ref, str):
            return ref
        names = list(self._signature.parameters)
        if 0 <= ref < len(names):
            return names[ref]
        return None

    def get(self, ref: int | str, default: Any = None) -> Any:
        """Read an argument by parameter name or positional index."""
        if self._bound is None:
            if isinstance(ref, int):
                return self._args[ref] if 0 <= ref < len(self._args) else default
            return self._kwargs.get(ref, default)

        name = self._param_name(ref)
        if name is None:
            return default
        arguments = self._bound.arguments
        if name in arguments:
            return arguments[name]
        param = self._signature.parameters.get(name)
        if param is not None:
            return default if param.default is param.empty else param.default
        for param in self._signature.parameters.values():
            if param.kind is param.VAR_KEYWORD:
                return arguments.get(param.name, {}).get(name, default)
        return default

    def replace(self, ref: int | str, value: Any) -> None:
        """Substitute an argument before the original runs."""
        if self._bound is None:
            if isinstance(ref, int):
                self._args[ref] = value
            else:
                self._kwargs[ref] = value
            return

        name = self._param_name(ref)
        if name is None or name not in self._signature.parameters:
            raise KeyError(f"{self.qualname} has no parameter {ref!r}")
        self._bound.arguments[name] = value

    def call_arguments(self) -> tuple[tuple, dict[str, Any]]:
        """Positional and keyword arguments to hand to the original."""
        if self._bound is None:
            return tuple(self._args), dict(self._kwargs)
        return self._bound.args, self._bound.kwargs

    # Force-result slot

    def force_result(self, value: Any) -> None:
        self._forced = value

    @property
    def has_forced_result(self) -> bool:
        return self._forced is not _UNSET

    @property
    def forced_result(self) -> Any:
        if self._forced is _UNSET:
            raise LookupError("No result was forced for this call")
        return self._forced
