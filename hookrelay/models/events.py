"""Pydantic schemas for the event stream sent to the Collector."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    """Kinds of events the agent emits."""
    API_CALL = "api_call"
    API_RESPONSE = "api_response"
    WEBVIEW_JS_EXECUTION = "webview_js_execution"
    WEBVIEW_LOAD_HTML = "webview_load_html"
    CAPTCHA_JS = "captcha_js"
    CERT_BYPASS = "cert_bypass"


# ============================================================================
# Payload Schemas
# ============================================================================


class ApiCallPayload(BaseModel):
    """Captured network request."""

    method: str = "GET"
    url: str
    headers: dict[str, str] = {}
    body: str | None = None
    body_encoding: str | None = Field(None, pattern="^(utf-8|base64)$")
    truncated: bool = False


class ApiResponsePayload(BaseModel):
    """Captured completion of a network request."""

    status: int | None = None
    headers: dict[str, str] = {}
    body: str | None = None
    body_encoding: str | None = Field(None, pattern="^(utf-8|base64)$")
    error: str | None = None
    truncated: bool = False


class ScriptPayload(BaseModel):
    """Script or markup handed to a WebView."""

    content: str
    base_url: str | None = None
    length: int = 0
    truncated: bool = False
    relevant: bool = False
    markers: list[str] = []


class CertBypassPayload(BaseModel):
    """A trust evaluation that was forced to succeed."""

    mechanism: str
    symbol: str | None = None
    context: str | None = None
    forced_result: Any = True


PAYLOAD_MODELS: dict[EventType, type[BaseModel]] = {
    EventType.API_CALL: ApiCallPayload,
    EventType.API_RESPONSE: ApiResponsePayload,
    EventType.WEBVIEW_JS_EXECUTION: ScriptPayload,
    EventType.WEBVIEW_LOAD_HTML: ScriptPayload,
    EventType.CAPTCHA_JS: ScriptPayload,
    EventType.CERT_BYPASS: CertBypassPayload,
}


# ============================================================================
# Event Schema
# ============================================================================


class Event(BaseModel):
    """The unit transmitted to the Collector.

    ``timestamp`` is authoritative for ordering; arrival order at the
    Collector is best-effort only. ``dropped_before`` counts events the
    relay discarded immediately before this one.
    """

    type: EventType
    source: str
    payload: ApiCallPayload | ApiResponsePayload | ScriptPayload | CertBypassPayload
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: str | None = None
    unmatched: bool = False
    thread_id: int | None = None
    dropped_before: int = Field(default=0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _coerce_payload(cls, data: Any) -> Any:
        """Pick the payload model from ``type`` when deserializing raw dicts."""
        if not isinstance(data, dict):
            return data
        payload = data.get("payload")
        if not isinstance(payload, dict):
            return data
        try:
            model = PAYLOAD_MODELS[EventType(data.get("type"))]
        except ValueError:
            # Unknown type; let field validation report it
            return data
        try:
            return {**data, "payload": model.model_validate(payload)}
        except ValidationError as e:
            raise ValueError(f"Invalid payload for {data.get('type')}: {e}") from e

    @model_validator(mode="after")
    def _check_payload_type(self) -> "Event":
        expected = PAYLOAD_MODELS[self.type]
        if not isinstance(self.payload, expected):
            raise ValueError(
                f"{self.type.value} events require {expected.__name__}, "
                f"got {type(self.payload).__name__}"
            )
        return self
