"""Tests for the interception engine: resolution, install, dispatch, restore."""

import logging
import threading

import pytest

from hookrelay.exceptions import InstallConflict, ResolutionError
from hookrelay.models.hooks import HookDescriptor, HookFamily, HookPolicy, TargetSpec
from hookrelay.services.handlers import BaseHandler
from hookrelay.services.interception_engine import (
    HOOK_MARKER,
    InterceptionEngine,
    agent_code,
    in_agent_code,
)
from hookrelay.tests import fake_host
from hookrelay.tests.conftest import (
    HOST_MODULE,
    SCRIPT_TARGET,
    TRUST_TARGET,
    make_target,
)


class RecordingHandler(BaseHandler):
    """Observes calls without emitting anything."""

    families = tuple(HookFamily)

    def __init__(self, target, normalizer=None, emit=None):
        super().__init__(target, normalizer, emit or (lambda event: None))
        self.entered = []
        self.exited = []

    def on_enter(self, context):
        self.entered.append(context.call_arguments())

    def on_exit(self, context, result):
        self.exited.append(result)


class ExplodingHandler(RecordingHandler):
    """Rewrites an argument, then fails."""

    def __init__(self, target, replace=None, **kwargs):
        super().__init__(target, **kwargs)
        self.replace = replace

    def on_enter(self, context):
        if self.replace is not None:
            context.replace(*self.replace)
        context.force_result("forced")
        raise RuntimeError("handler bug")


class FailingExitHandler(RecordingHandler):
    def on_exit(self, context, result):
        raise KeyError("missing")


def spec(symbol=None, pattern=None, module=HOST_MODULE):
    return TargetSpec(module=module, symbol=symbol, pattern=pattern)


def descriptor_for(handler):
    return handler.descriptor()


class TestResolve:
    def test_resolves_module_function(self, engine):
        resolved = engine.resolve(spec("evaluate_server_trust"))
        assert resolved.function is fake_host.evaluate_server_trust
        assert resolved.owner is fake_host
        assert resolved.kind == "function"
        assert resolved.qualname == f"{HOST_MODULE}:evaluate_server_trust"

    def test_resolves_class_method(self, engine):
        resolved = engine.resolve(spec("WebView.evaluate_javascript"))
        assert resolved.owner is fake_host.WebView
        assert resolved.attribute == "evaluate_javascript"
        assert resolved.own_attribute is True

    def test_resolves_static_and_class_methods(self, engine):
        static = engine.resolve(spec("Counter.double"))
        klass = engine.resolve(spec("Counter.build"))
        assert static.kind == "staticmethod"
        assert klass.kind == "classmethod"

    def test_inherited_method_is_not_own_attribute(self, engine):
        resolved = engine.resolve(spec("SecureWebView.evaluate_javascript"))
        assert resolved.owner is fake_host.SecureWebView
        assert resolved.own_attribute is False

    def test_pattern_matching_one_name(self, engine):
        resolved = engine.resolve(spec(pattern=r"fingerprint$"))
        assert resolved.function is fake_host.check_fingerprint

    def test_pattern_matching_several_names_is_ambiguous(self, engine):
        with pytest.raises(ResolutionError, match="ambiguous"):
            engine.resolve(spec(pattern=r"^check_"))

    def test_pattern_matching_nothing(self, engine):
        with pytest.raises(ResolutionError, match="matches"):
            engine.resolve(spec(pattern=r"no_such_function"))

    def test_invalid_pattern(self, engine):
        with pytest.raises(ResolutionError, match="Invalid pattern"):
            engine.resolve(spec(pattern=r"check_("))

    def test_module_not_loaded(self, engine):
        with pytest.raises(ResolutionError, match="not loaded"):
            engine.resolve(spec("anything", module="hookrelay_not_a_loaded_module"))

    def test_missing_symbol(self, engine):
        with pytest.raises(ResolutionError, match="does not exist"):
            engine.resolve(spec("WebView.no_such_method"))

    def test_missing_class(self, engine):
        with pytest.raises(ResolutionError, match="attribute path"):
            engine.resolve(spec("NoSuchClass.method"))

    def test_non_callable_symbol(self, engine):
        with pytest.raises(ResolutionError, match="not callable"):
            engine.resolve(spec("VERSION"))

    def test_target_spec_requires_exactly_one_locator(self):
        with pytest.raises(ValueError):
            TargetSpec(module=HOST_MODULE)
        with pytest.raises(ValueError):
            TargetSpec(module=HOST_MODULE, symbol="countdown", pattern="countdown")


class TestInstall:
    def test_install_redirects_and_passes_through(self, engine):
        handler = RecordingHandler(SCRIPT_TARGET)
        hook = engine.install(descriptor_for(handler))

        view = fake_host.WebView()
        assert view.evaluate_javascript("1 + 1") == "len:5"
        assert view.evaluated == ["1 + 1"]
        assert len(handler.entered) == 1
        assert handler.exited == ["len:5"]
        assert getattr(fake_host.WebView.evaluate_javascript, HOOK_MARKER) == hook.name
        assert engine.installed == [SCRIPT_TARGET.id]

    def test_trampoline_keeps_metadata(self, engine):
        original = fake_host.WebView.load_html_string
        engine.install(descriptor_for(RecordingHandler(make_target(
            "html", HookFamily.CONTENT_LOAD, "WebView.load_html_string",
            arguments={"content": "html"},
        ))))
        assert fake_host.WebView.load_html_string.__name__ == "load_html_string"
        assert fake_host.WebView.load_html_string.__wrapped__ is original

    def test_second_install_of_same_hook_conflicts(self, engine):
        handler = RecordingHandler(SCRIPT_TARGET)
        engine.install(descriptor_for(handler))
        with pytest.raises(InstallConflict):
            engine.install(descriptor_for(handler))

        fake_host.WebView().evaluate_javascript("x")
        assert len(handler.entered) == 1

    def test_same_address_under_another_name_conflicts(self, engine):
        engine.install(descriptor_for(RecordingHandler(SCRIPT_TARGET)))
        other = make_target(
            "other_js", HookFamily.SCRIPT_EVALUATION, "WebView.evaluate_javascript",
            arguments={"content": "script"},
        )
        with pytest.raises(InstallConflict, match="already hooked"):
            engine.install(descriptor_for(RecordingHandler(other)))

    def test_address_redirected_by_another_engine_conflicts(self, engine):
        engine.install(descriptor_for(RecordingHandler(SCRIPT_TARGET)))
        with pytest.raises(InstallConflict, match="another agent"):
            InterceptionEngine().install(descriptor_for(RecordingHandler(SCRIPT_TARGET)))

    def test_unwritable_target(self, engine):
        target = make_target(
            "builtin_bits", HookFamily.TRUST_VALIDATION, "int.bit_length", module="builtins",
        )
        with pytest.raises(ResolutionError, match="not writable"):
            engine.install(descriptor_for(RecordingHandler(target)))
        assert engine.installed == []

    def test_install_all_reports_skips(self, engine, caplog):
        missing = make_target(
            "missing", HookFamily.TRUST_VALIDATION, "evaluate", module="hookrelay_absent_module",
        )
        descriptors = [
            descriptor_for(RecordingHandler(SCRIPT_TARGET)),
            descriptor_for(RecordingHandler(missing)),
        ]
        with caplog.at_level(logging.WARNING):
            report = engine.install_all(descriptors)

        assert report.installed == [SCRIPT_TARGET.id]
        assert report.skipped["missing"].startswith("unresolved")
        assert "Skipping missing" in caplog.text

    def test_staticmethod_stays_static(self, engine):
        handler = RecordingHandler(make_target(
            "double", HookFamily.SCRIPT_EVALUATION, "Counter.double", arguments={"content": 0},
        ))
        engine.install(descriptor_for(handler))
        assert fake_host.Counter.double(3) == 6
        assert fake_host.Counter().double(4) == 8
        assert len(handler.entered) == 2

    def test_classmethod_stays_bound_to_class(self, engine):
        class Sub(fake_host.Counter):
            pass

        handler = RecordingHandler(make_target(
            "build", HookFamily.SCRIPT_EVALUATION, "Counter.build", arguments={"content": 1},
        ))
        engine.install(descriptor_for(handler))
        assert fake_host.Counter.build(5) == ("Counter", 5)
        assert Sub.build(6) == ("Sub", 6)
        assert len(handler.entered) == 2


class TestDispatch:
    def test_force_result_skips_original(self, engine, install):
        install(TRUST_TARGET)
        evaluator = fake_host.TrustEvaluator(trusted=False)
        assert evaluator.evaluate("trust-object", host="api.example") is True
        assert evaluator.calls == 0

    def test_on_enter_failure_calls_original_with_untouched_arguments(self, engine, caplog):
        handler = ExplodingHandler(SCRIPT_TARGET, replace=("script", "tampered"))
        engine.install(descriptor_for(handler))

        view = fake_host.WebView()
        with caplog.at_level(logging.WARNING):
            result = view.evaluate_javascript("original")

        assert result == "len:8"
        assert view.evaluated == ["original"]
        assert engine.fault_count == 1
        assert "failed during on_enter" in caplog.text

    def test_on_enter_failure_ignores_forced_result(self, engine):
        engine.install(descriptor_for(ExplodingHandler(TRUST_TARGET)))
        evaluator = fake_host.TrustEvaluator(trusted=False)
        assert evaluator.evaluate("trust-object") is False
        assert evaluator.calls == 1

    def test_on_exit_failure_returns_original_result(self, engine):
        engine.install(descriptor_for(FailingExitHandler(SCRIPT_TARGET)))
        assert fake_host.WebView().evaluate_javascript("abc") == "len:3"
        assert engine.fault_count == 1

    def test_concurrent_faults_are_all_counted(self, engine):
        engine.install(descriptor_for(ExplodingHandler(SCRIPT_TARGET)))
        view = fake_host.WebView()

        def call_many():
            for _ in range(200):
                view.evaluate_javascript("x")

        threads = [threading.Thread(target=call_many) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert engine.fault_count == 1600
        assert len(view.evaluated) == 1600

    def test_original_exception_propagates(self, engine):
        handler = RecordingHandler(make_target(
            "hostname", HookFamily.SCRIPT_EVALUATION, "check_hostname",
            arguments={"content": "hostname"},
        ))
        engine.install(descriptor_for(handler))
        with pytest.raises(ValueError, match="does not match"):
            fake_host.check_hostname(None, "evil.example")
        assert engine.fault_count == 0
        assert handler.exited == []

    def test_replaced_arguments_reach_original(self, engine):
        class Rewriter(RecordingHandler):
            def on_enter(self, context):
                context.replace("script", context.get("script").upper())

        engine.install(descriptor_for(Rewriter(SCRIPT_TARGET)))
        view = fake_host.WebView()
        view.evaluate_javascript("quiet")
        assert view.evaluated == ["QUIET"]

    def test_agent_calls_into_hooked_function_are_not_intercepted(self, engine):
        class Reentrant(RecordingHandler):
            def on_enter(self, context):
                super().on_enter(context)
                assert in_agent_code()
                fake_host.WebView().evaluate_javascript("from the agent")

        handler = Reentrant(SCRIPT_TARGET)
        engine.install(descriptor_for(handler))
        fake_host.WebView().evaluate_javascript("from the host")

        assert len(handler.entered) == 1
        assert not in_agent_code()

    def test_calls_inside_agent_code_block_bypass_handlers(self, engine):
        handler = RecordingHandler(SCRIPT_TARGET)
        engine.install(descriptor_for(handler))
        with agent_code():
            fake_host.WebView().evaluate_javascript("quiet")
        assert handler.entered == []

    def test_host_recursion_is_intercepted(self, engine):
        handler = RecordingHandler(make_target(
            "countdown", HookFamily.SCRIPT_EVALUATION, "countdown", arguments={"content": "n"},
        ))
        engine.install(descriptor_for(handler))
        assert fake_host.countdown(3) == 0
        assert len(handler.entered) == 4

    def test_invoke_original_uses_current_arguments(self, engine):
        captured = {}

        class Invoker(RecordingHandler):
            def on_enter(self, context):
                context.replace("script", "replaced")
                captured["result"] = engine.invoke_original(context)

        engine.install(descriptor_for(Invoker(SCRIPT_TARGET)))
        view = fake_host.WebView()
        view.evaluate_javascript("first")
        assert captured["result"] == "len:8"
        assert view.evaluated == ["replaced", "replaced"]


class TestUninstall:
    def test_uninstall_restores_original(self, engine):
        original = fake_host.WebView.__dict__["evaluate_javascript"]
        handler = RecordingHandler(SCRIPT_TARGET)
        engine.install(descriptor_for(handler))

        assert engine.uninstall(SCRIPT_TARGET.id) is True
        assert fake_host.WebView.__dict__["evaluate_javascript"] is original
        fake_host.WebView().evaluate_javascript("after")
        assert handler.entered == []

    def test_uninstall_inherited_removes_shadow(self, engine):
        target = make_target(
            "secure_js", HookFamily.SCRIPT_EVALUATION, "SecureWebView.evaluate_javascript",
            arguments={"content": "script"},
        )
        engine.install(descriptor_for(RecordingHandler(target)))
        assert "evaluate_javascript" in vars(fake_host.SecureWebView)

        engine.uninstall("secure_js")
        assert "evaluate_javascript" not in vars(fake_host.SecureWebView)

    def test_uninstall_restores_staticmethod(self, engine):
        raw = fake_host.Counter.__dict__["double"]
        engine.install(descriptor_for(RecordingHandler(make_target(
            "double", HookFamily.SCRIPT_EVALUATION, "Counter.double", arguments={"content": 0},
        ))))
        engine.uninstall("double")
        assert fake_host.Counter.__dict__["double"] is raw

    def test_uninstall_unknown_hook(self, engine):
        assert engine.uninstall("never_installed") is False

    def test_uninstall_all_restores_everything(self, engine, install):
        install(TRUST_TARGET)
        install(SCRIPT_TARGET)
        assert engine.uninstall_all() == 2
        assert engine.installed == []
        assert not hasattr(fake_host.TrustEvaluator.evaluate, HOOK_MARKER)
        assert fake_host.TrustEvaluator().evaluate("trust") is False

    def test_reinstall_after_uninstall(self, engine):
        handler = RecordingHandler(SCRIPT_TARGET)
        engine.install(descriptor_for(handler))
        engine.uninstall(SCRIPT_TARGET.id)
        engine.install(descriptor_for(handler))
        fake_host.WebView().evaluate_javascript("again")
        assert len(handler.entered) == 1


def test_descriptor_policy_follows_family():
    descriptor = RecordingHandler(TRUST_TARGET).descriptor()
    assert isinstance(descriptor, HookDescriptor)
    assert descriptor.policy is HookPolicy.FORCE_RESULT
    assert descriptor.target == TRUST_TARGET.spec()
