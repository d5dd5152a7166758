"""Hook handlers, one per family of intercepted entry point.

Handler families:
    - **Trust validation**: TrustValidationHandler (force-result)
    - **WebView**: WebViewHandler for script evaluation and content load
      (passthrough)
    - **Network**: NetworkTaskHandler with CompletionWrapper (wrap-callback)
"""

from hookrelay.data.hook_targets.models import HookTarget
from hookrelay.models.hooks import HookFamily
from hookrelay.services.event_normalizer import EventNormalizer
from hookrelay.services.handlers.base_handler import BaseHandler, EventSink
from hookrelay.services.handlers.network_handler import CompletionWrapper, NetworkTaskHandler
from hookrelay.services.handlers.trust_handler import TrustValidationHandler
from hookrelay.services.handlers.webview_handler import WebViewHandler

HANDLERS: dict[HookFamily, type[BaseHandler]] = {
    HookFamily.TRUST_VALIDATION: TrustValidationHandler,
    HookFamily.SCRIPT_EVALUATION: WebViewHandler,
    HookFamily.CONTENT_LOAD: WebViewHandler,
    HookFamily.NETWORK_TASK: NetworkTaskHandler,
}


def create_handler(target: HookTarget, normalizer: EventNormalizer, emit: EventSink) -> BaseHandler:
    """Instantiate the handler class for the target's family."""
    return HANDLERS[target.family](target, normalizer, emit)


__all__ = [
    "BaseHandler",
    "CompletionWrapper",
    "HANDLERS",
    "NetworkTaskHandler",
    "TrustValidationHandler",
    "WebViewHandler",
    "create_handler",
]
