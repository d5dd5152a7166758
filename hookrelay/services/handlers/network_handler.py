"""Network task handler and completion-callback wrapper.

On request creation the handler captures method, URL, headers and body
into an ``api_call`` event with a fresh correlation id, then swaps the
caller's completion callback for a ``CompletionWrapper``. When the
networking stack later fires the wrapper, it captures the response into an
``api_response`` event carrying the same correlation id, emits it, and only
then calls the original callback with the unmodified arguments.

A request whose completion never fires stays pending in the correlation
table until it is pruned; that is accepted data loss, not an error.
"""

import functools
import logging
from collections.abc import Callable
from typing import Any

from hookrelay.exceptions import HandlerFault
from hookrelay.models.hooks import CallContext, HookFamily
from hookrelay.services.handlers.base_handler import BaseHandler, read_field
from hookrelay.services.interception_engine import agent_code

logger = logging.getLogger(__name__)

REQUEST_FIELDS = {
    "method": ("method", "http_method", "HTTPMethod"),
    "url": ("url", "full_url", "URL", "uri"),
    "headers": ("headers", "allHTTPHeaderFields"),
    "body": ("body", "data", "content", "HTTPBody"),
}

RESPONSE_FIELDS = {
    "status": ("status_code", "status", "statusCode", "code"),
    "headers": ("headers", "allHeaderFields"),
    "body": ("body", "content", "data", "text"),
}


def extract_request(request: Any) -> dict[str, Any]:
    """Pull method/url/headers/body out of a request descriptor."""
    if isinstance(request, (str, bytes)):
        return {"method": "GET", "url": request, "headers": None, "body": None}
    return {
        field: read_field(request, names)
        for field, names in REQUEST_FIELDS.items()
    }


class CompletionWrapper:
    """Stands in for a caller-supplied completion callback.

    Carries the callback's name, docstring and ``__wrapped__`` and forwards
    attribute access, so the networking stack sees the original. Calling it
    captures the response, then delegates.
    """

    def __init__(self, callback: Callable, handler: "NetworkTaskHandler", correlation_id: str):
        # Copies callback.__dict__, which for a nested wrapper holds its own
        # state; our attributes must be set afterwards.
        functools.update_wrapper(self, callback)
        self._callback = callback
        self._handler = handler
        self.correlation_id = correlation_id

    def __call__(self, *args, **kwargs):
        try:
            with agent_code():
                self._handler.capture_response(self.correlation_id, args, kwargs)
        except Exception as e:
            fault = HandlerFault(self._handler.name, "completion", e)
            logger.warning(f"{fault}; delivering the response unobserved")
        return self._callback(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        if name == "_callback":
            raise AttributeError(name)
        return getattr(self._callback, name)

    def __repr__(self) -> str:
        return repr(self._callback)


class NetworkTaskHandler(BaseHandler):
    """Handler for ``observe-and-wrap-callback`` network task hooks."""

    families = (HookFamily.NETWORK_TASK,)

    def on_enter(self, context: CallContext) -> None:
        request = self.argument(context, "request")
        event = self.normalizer.api_call(self.name, **extract_request(request))
        self.emit(event)

        completion = self.argument(context, "completion")
        if completion is None:
            logger.debug(
                f"{context.qualname} called without a completion; "
                f"{event.correlation_id} will stay unmatched"
            )
            return
        context.replace(
            self.target.arguments["completion"],
            CompletionWrapper(completion, self, event.correlation_id),
        )

    def capture_response(self, correlation_id: str, args: tuple, kwargs: dict) -> None:
        """Emit the ``api_response`` for one completion invocation."""
        values = dict(zip(self.target.completion_arguments, args))
        values.update(kwargs)

        response = values.get("response")
        body = values.get("data")
        if body is None:
            body = read_field(response, RESPONSE_FIELDS["body"])

        self.emit(self.normalizer.api_response(
            source=self.name,
            correlation_id=correlation_id,
            status=read_field(response, RESPONSE_FIELDS["status"]),
            headers=read_field(response, RESPONSE_FIELDS["headers"]),
            body=body,
            error=values.get("error"),
        ))
