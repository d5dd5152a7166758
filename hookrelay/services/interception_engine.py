"""Interception engine: resolves entry points and installs trampolines.

The engine redirects a callable attribute of a loaded module (or of a class
defined in one) to a generated trampoline that runs handler logic around
the preserved original implementation.

Guarantees:
    - Only modules already present in ``sys.modules`` are searched; the
      resolver never imports anything into the host.
    - An address is redirected at most once. A second install for the same
      address, or for an address another engine already redirected, raises
      ``InstallConflict``.
    - Nothing raised by handler code crosses the trampoline boundary. A
      failing ``on_enter`` degrades to calling the original with the
      unmodified arguments; a failing ``on_exit`` is logged and the
      original's result returned. Exceptions raised by the original belong
      to the host and propagate unchanged.
    - Trampolines take no locks on the call path. The registry lock only
      guards install and uninstall, which run on the attaching thread; a
      separate counter lock is taken only when a handler fault is recorded.

Reentrancy:
    A thread-local flag marks agent code (handler and relay paths). A
    trampoline entered while the flag is set goes straight to the original,
    so the agent never observes its own calls into hooked functions. Host
    recursion through a hooked function is intercepted as usual.
"""

import functools
import inspect
import logging
import re
import sys
import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from hookrelay.exceptions import HandlerFault, InstallConflict, ResolutionError
from hookrelay.models.hooks import CallContext, HookDescriptor, HookPolicy, TargetSpec

logger = logging.getLogger(__name__)

# Attribute set on every trampoline; holds the owning hook's name
HOOK_MARKER = "__hookrelay_hook__"

_MISSING = object()
_agent_state = threading.local()


def in_agent_code() -> bool:
    """True while the current thread is running agent code."""
    return getattr(_agent_state, "depth", 0) > 0


@contextmanager
def agent_code() -> Iterator[None]:
    """Mark the current thread as running agent code."""
    _agent_state.depth = getattr(_agent_state, "depth", 0) + 1
    try:
        yield
    finally:
        _agent_state.depth -= 1


@dataclass
class ResolvedTarget:
    """A located entry point.

    Attributes:
        owner: Module or class holding the attribute.
        attribute: Attribute name on ``owner``.
        raw: Attribute value as stored (may be a staticmethod/classmethod).
        function: The underlying callable.
        kind: ``function``, ``staticmethod`` or ``classmethod``.
        qualname: ``module:Qualified.name`` for logs and events.
        own_attribute: False when the attribute is inherited and the
            trampoline shadows it on ``owner``.
    """

    owner: Any
    attribute: str
    raw: Any
    function: Callable
    kind: str
    qualname: str
    own_attribute: bool = True


@dataclass
class InstalledHook:
    """An active redirect and everything needed to undo it."""

    descriptor: HookDescriptor
    target: ResolvedTarget
    signature: inspect.Signature | None
    trampoline: Any = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def original(self) -> Callable:
        return self.target.function

    @property
    def address(self) -> tuple[int, str]:
        return id(self.target.owner), self.target.attribute


@dataclass
class InstallReport:
    """Outcome of installing a batch of descriptors."""

    installed: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"installed": list(self.installed), "skipped": dict(self.skipped)}


def _signature_of(function: Callable) -> inspect.Signature | None:
    try:
        return inspect.signature(function)
    except (TypeError, ValueError):
        return None


class InterceptionEngine:
    """Installs and removes trampolines for hook descriptors."""

    def __init__(self):
        self._hooks: dict[str, InstalledHook] = {}
        self._by_address: dict[tuple[int, str], InstalledHook] = {}
        self._lock = threading.Lock()
        self._fault_lock = threading.Lock()
        self.fault_count = 0

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, target: TargetSpec) -> ResolvedTarget:
        """Locate ``target`` among the loaded modules.

        Raises:
            ResolutionError: If the module is not loaded, the symbol is
                missing or not callable, or a pattern matches zero or
                several names.
        """
        module = sys.modules.get(target.module)
        if module is None:
            raise ResolutionError(f"Module {target.module} is not loaded")

        if target.symbol is not None:
            return self._lookup(module, target.module, target.symbol)

        try:
            regex = re.compile(target.pattern)
        except re.error as e:
            raise ResolutionError(f"Invalid pattern {target.pattern!r}: {e}")

        candidates = [name for name in self._qualified_names(module) if regex.search(name)]
        if not candidates:
            raise ResolutionError(f"No symbol in {target.module} matches /{target.pattern}/")
        if len(candidates) > 1:
            raise ResolutionError(
                f"Pattern /{target.pattern}/ is ambiguous in {target.module}: "
                f"{', '.join(candidates)}"
            )
        return self._lookup(module, target.module, candidates[0])

    def _qualified_names(self, module: Any) -> list[str]:
        """Callable names defined in ``module``: ``func`` and ``Class.method``."""
        names = []
        for name, value in vars(module).items():
            if name.startswith("__"):
                continue
            if inspect.isclass(value):
                if getattr(value, "__module__", None) != module.__name__:
                    continue
                for member, raw in vars(value).items():
                    if member.startswith("__"):
                        continue
                    if isinstance(raw, (staticmethod, classmethod)) or inspect.isroutine(raw):
                        names.append(f"{name}.{member}")
            elif callable(value):
                names.append(name)
        return sorted(names)

    def _lookup(self, module: Any, module_name: str, symbol: str) -> ResolvedTarget:
        *path, attribute = symbol.split(".")
        owner = module
        for part in path:
            owner = getattr(owner, part, _MISSING)
            if owner is _MISSING:
                raise ResolutionError(f"{module_name} has no attribute path {symbol}")

        raw = inspect.getattr_static(owner, attribute, _MISSING)
        if raw is _MISSING:
            raise ResolutionError(f"{module_name}:{symbol} does not exist")

        if isinstance(raw, staticmethod):
            function, kind = raw.__func__, "staticmethod"
        elif isinstance(raw, classmethod):
            function, kind = raw.__func__, "classmethod"
        else:
            function, kind = raw, "function"

        if not callable(function):
            raise ResolutionError(f"{module_name}:{symbol} is not callable")

        return ResolvedTarget(
            owner=owner,
            attribute=attribute,
            raw=raw,
            function=function,
            kind=kind,
            qualname=f"{module_name}:{symbol}",
            own_attribute=attribute in getattr(owner, "__dict__", {}),
        )

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    def install(self, descriptor: HookDescriptor) -> InstalledHook:
        """Redirect the descriptor's target to a trampoline.

        Raises:
            ResolutionError: If the target cannot be located or written.
            InstallConflict: If the address is already redirected.
        """
        target = self.resolve(descriptor.target)

        with self._lock:
            if descriptor.name in self._hooks:
                raise InstallConflict(f"Hook {descriptor.name} is already installed")
            existing = self._by_address.get((id(target.owner), target.attribute))
            if existing is not None:
                raise InstallConflict(
                    f"{target.qualname} is already hooked by {existing.name}"
                )
            owner_hook = getattr(target.function, HOOK_MARKER, None)
            if owner_hook is not None:
                raise InstallConflict(
                    f"{target.qualname} is already redirected by another agent ({owner_hook})"
                )

            hook = InstalledHook(
                descriptor=descriptor,
                target=target,
                signature=_signature_of(target.function),
            )
            hook.trampoline = self._build_trampoline(hook)
            try:
                setattr(target.owner, target.attribute, hook.trampoline)
            except (AttributeError, TypeError) as e:
                raise ResolutionError(f"{target.qualname} is not writable: {e}")

            self._hooks[descriptor.name] = hook
            self._by_address[hook.address] = hook

        logger.info(
            f"Installed {descriptor.name} on {target.qualname} ({descriptor.policy.value})"
        )
        return hook

    def install_all(self, descriptors: Iterable[HookDescriptor]) -> InstallReport:
        """Install every descriptor, skipping the ones that fail."""
        report = InstallReport()
        for descriptor in descriptors:
            try:
                self.install(descriptor)
                report.installed.append(descriptor.name)
            except ResolutionError as e:
                logger.warning(f"Skipping {descriptor.name}: {e}")
                report.skipped[descriptor.name] = f"unresolved: {e}"
            except InstallConflict as e:
                logger.warning(f"Skipping {descriptor.name}: {e}")
                report.skipped[descriptor.name] = f"conflict: {e}"
        return report

    def _build_trampoline(self, hook: InstalledHook) -> Any:
        engine = self

        @functools.wraps(hook.original)
        def trampoline(*args, **kwargs):
            return engine._dispatch(hook, args, kwargs)

        setattr(trampoline, HOOK_MARKER, hook.name)
        if hook.target.kind == "staticmethod":
            return staticmethod(trampoline)
        if hook.target.kind == "classmethod":
            return classmethod(trampoline)
        return trampoline

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    def _dispatch(self, hook: InstalledHook, args: tuple, kwargs: dict) -> Any:
        original = hook.original
        if in_agent_code():
            return original(*args, **kwargs)

        descriptor = hook.descriptor
        try:
            with agent_code():
                context = CallContext(
                    descriptor,
                    args,
                    kwargs,
                    signature=hook.signature,
                    qualname=hook.target.qualname,
                    original=original,
                )
                descriptor.handler.on_enter(context)
                if descriptor.policy is HookPolicy.FORCE_RESULT and context.has_forced_result:
                    return context.forced_result
                call_args, call_kwargs = context.call_arguments()
        except Exception as e:
            self._record_fault(HandlerFault(descriptor.name, "on_enter", e))
            return original(*args, **kwargs)

        result = original(*call_args, **call_kwargs)

        try:
            with agent_code():
                descriptor.handler.on_exit(context, result)
        except Exception as e:
            self._record_fault(HandlerFault(descriptor.name, "on_exit", e))
        return result

    def invoke_original(self, context: CallContext) -> Any:
        """Call the preserved original with the context's current arguments."""
        original = context.original
        if original is None:
            original = self._hooks[context.hook_name].original
        args, kwargs = context.call_arguments()
        return original(*args, **kwargs)

    def _record_fault(self, fault: HandlerFault) -> None:
        with agent_code():
            with self._fault_lock:
                self.fault_count += 1
            logger.warning(f"{fault}; passing through to the original")
            logger.debug(f"{fault.hook_name} fault detail", exc_info=fault.cause)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def uninstall(self, name: str) -> bool:
        """Restore the original behind hook ``name``.

        Returns:
            True if the original was restored, False if the hook was unknown
            or another actor has redirected the address since.
        """
        with self._lock:
            hook = self._hooks.pop(name, None)
            if hook is None:
                return False
            self._by_address.pop(hook.address, None)

        target = hook.target
        current = inspect.getattr_static(target.owner, target.attribute, _MISSING)
        if current is not hook.trampoline:
            logger.warning(
                f"{target.qualname} was redirected again after {name} was installed; "
                "leaving it in place"
            )
            return False

        try:
            if target.own_attribute:
                setattr(target.owner, target.attribute, target.raw)
            else:
                delattr(target.owner, target.attribute)
        except (AttributeError, TypeError) as e:
            logger.warning(f"Could not restore {target.qualname}: {e}")
            return False

        logger.info(f"Restored {target.qualname}")
        return True

    def uninstall_all(self) -> int:
        """Restore every installed hook, newest first. Returns the count restored."""
        with self._lock:
            names = list(self._hooks)
        return sum(1 for name in reversed(names) if self.uninstall(name))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def installed(self) -> list[str]:
        with self._lock:
            return list(self._hooks)

    def get(self, name: str) -> InstalledHook | None:
        with self._lock:
            return self._hooks.get(name)
