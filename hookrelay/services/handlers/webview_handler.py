"""WebView script-evaluation and content-load handler."""

import logging

from hookrelay.models.events import EventType
from hookrelay.models.hooks import CallContext, HookFamily
from hookrelay.services.handlers.base_handler import BaseHandler

logger = logging.getLogger(__name__)


class WebViewHandler(BaseHandler):
    """Observes scripts and markup handed to a WebView.

    Emits ``webview_js_execution`` (script evaluation) or
    ``webview_load_html`` (content load) with the full text, followed by a
    ``captcha_js`` event when the text carries a CAPTCHA vendor marker.
    Arguments are never modified and the original always runs.
    """

    families = (HookFamily.SCRIPT_EVALUATION, HookFamily.CONTENT_LOAD)

    EVENT_TYPES = {
        HookFamily.SCRIPT_EVALUATION: EventType.WEBVIEW_JS_EXECUTION,
        HookFamily.CONTENT_LOAD: EventType.WEBVIEW_LOAD_HTML,
    }

    def on_enter(self, context: CallContext) -> None:
        events = self.normalizer.script_events(
            source=self.name,
            event_type=self.EVENT_TYPES[self.target.family],
            content=self.argument(context, "content"),
            base_url=self.argument(context, "base_url"),
        )
        self.emit_all(events)
        if len(events) > 1:
            logger.info(
                f"CAPTCHA markers {events[-1].payload.markers} in content "
                f"passed to {context.qualname}"
            )
