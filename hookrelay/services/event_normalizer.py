"""
Event Normalizer

Shapes raw handler captures into the Event schema:
- Body and header coercion (text, base64 for binary, compact JSON for
  structured values)
- Optional truncation of large captures
- Relevance tagging of WebView content via the classifier
- Correlation id allocation and request/response matching

Everything here is a pure transformation except the correlation table.
"""

import base64
import json
import logging
import threading
from collections.abc import Mapping
from typing import Any

from hookrelay.exceptions import CorrelationTimeout
from hookrelay.models.events import (
    ApiCallPayload,
    ApiResponsePayload,
    CertBypassPayload,
    Event,
    EventType,
    ScriptPayload,
)
from hookrelay.services.classifier import RelevanceClassifier
from hookrelay.services.correlation import CorrelationTable

logger = logging.getLogger(__name__)

SCRIPT_EVENT_TYPES = (EventType.WEBVIEW_JS_EXECUTION, EventType.WEBVIEW_LOAD_HTML)


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return repr(value)


def normalize_headers(headers: Any) -> dict[str, str]:
    """Coerce a header mapping (or iterable of pairs) to ``str -> str``."""
    if not headers:
        return {}
    if isinstance(headers, Mapping) or hasattr(headers, "items"):
        items = headers.items()
    else:
        items = headers
    return {_as_text(name): _as_text(value) for name, value in items}


class EventNormalizer:
    """Builds Events from captured call data."""

    def __init__(
        self,
        classifier: RelevanceClassifier,
        correlations: CorrelationTable,
        capture_max_bytes: int = 0,
    ):
        self.classifier = classifier
        self.correlations = correlations
        self.capture_max_bytes = capture_max_bytes

    # Network

    def api_call(
        self,
        source: str,
        url: Any,
        method: Any = "GET",
        headers: Any = None,
        body: Any = None,
    ) -> Event:
        """Build an ``api_call`` event and register it as pending."""
        text, encoding, truncated = self.encode_body(body)
        event = Event(
            type=EventType.API_CALL,
            source=source,
            payload=ApiCallPayload(
                method=_as_text(method or "GET").upper(),
                url=_as_text(url),
                headers=normalize_headers(headers),
                body=text,
                body_encoding=encoding,
                truncated=truncated,
            ),
            correlation_id=self.correlations.allocate(),
            thread_id=threading.get_ident(),
        )
        self.correlations.register(event)
        return event

    def api_response(
        self,
        source: str,
        correlation_id: str | None,
        status: Any = None,
        headers: Any = None,
        body: Any = None,
        error: Any = None,
    ) -> Event:
        """Build an ``api_response`` event matched against its pending call.

        Responses whose call was pruned (or never registered) are marked
        ``unmatched`` but keep the correlation id they were issued with.
        """
        unmatched = correlation_id is None
        if correlation_id is not None:
            try:
                self.correlations.resolve(correlation_id)
            except CorrelationTimeout as e:
                logger.debug(f"{source}: {e}")
                unmatched = True

        text, encoding, truncated = self.encode_body(body)
        return Event(
            type=EventType.API_RESPONSE,
            source=source,
            payload=ApiResponsePayload(
                status=_coerce_status(status),
                headers=normalize_headers(headers),
                body=text,
                body_encoding=encoding,
                error=None if error is None else _as_text(error),
                truncated=truncated,
            ),
            correlation_id=correlation_id,
            unmatched=unmatched,
            thread_id=threading.get_ident(),
        )

    # WebView

    def script_events(
        self,
        source: str,
        event_type: EventType,
        content: Any,
        base_url: Any = None,
    ) -> list[Event]:
        """Build the WebView event, plus a ``captcha_js`` event when relevant."""
        if event_type not in SCRIPT_EVENT_TYPES:
            raise ValueError(f"{event_type} is not a WebView event type")

        text = _as_text(content)
        markers = self.classifier.matches(text)
        captured, truncated = self.truncate(text)
        primary = Event(
            type=event_type,
            source=source,
            payload=ScriptPayload(
                content=captured,
                base_url=None if base_url is None else _as_text(base_url),
                length=len(text),
                truncated=truncated,
            ),
            thread_id=threading.get_ident(),
        )
        events = [primary]
        if markers:
            events.append(primary.model_copy(update={
                "type": EventType.CAPTCHA_JS,
                "payload": primary.payload.model_copy(
                    update={"relevant": True, "markers": markers}
                ),
            }))
        return events

    # Trust validation

    def cert_bypass(
        self,
        source: str,
        mechanism: str,
        symbol: str | None = None,
        context: Any = None,
        forced_result: Any = True,
    ) -> Event:
        return Event(
            type=EventType.CERT_BYPASS,
            source=source,
            payload=CertBypassPayload(
                mechanism=mechanism,
                symbol=symbol,
                context=None if context is None else _describe(context),
                forced_result=_jsonable(forced_result),
            ),
            thread_id=threading.get_ident(),
        )

    # Coercion helpers

    def truncate(self, text: str) -> tuple[str, bool]:
        limit = self.capture_max_bytes
        if not limit:
            return text, False
        data = text.encode("utf-8")
        if len(data) <= limit:
            return text, False
        return data[:limit].decode("utf-8", errors="ignore"), True

    def encode_body(self, body: Any) -> tuple[str | None, str | None, bool]:
        """Return ``(text, encoding, truncated)`` for a captured body."""
        if body is None:
            return None, None, False

        if isinstance(body, (bytes, bytearray, memoryview)):
            data = bytes(body)
            truncated = bool(self.capture_max_bytes) and len(data) > self.capture_max_bytes
            if truncated:
                data = data[: self.capture_max_bytes]
            try:
                return data.decode("utf-8"), "utf-8", truncated
            except UnicodeDecodeError:
                return base64.b64encode(data).decode("ascii"), "base64", truncated

        if isinstance(body, (Mapping, list, tuple)):
            text = json.dumps(body, separators=(",", ":"), default=str)
        else:
            text = _as_text(body)
        text, truncated = self.truncate(text)
        return text, "utf-8", truncated


def _coerce_status(status: Any) -> int | None:
    if status is None:
        return None
    try:
        return int(status)
    except (TypeError, ValueError):
        logger.debug(f"Ignoring non-integer status {status!r}")
        return None


def _describe(context: Any, limit: int = 256) -> str:
    text = context if isinstance(context, str) else repr(context)
    return text if len(text) <= limit else text[:limit] + "..."
