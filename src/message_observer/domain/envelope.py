"""Decoding of queue message bodies into tagged delivery envelopes.

Two delivery paths land in the observation queue:

- Broadcast (SNS-style) deliveries wrap the published message with broker
  metadata: ``{"Type": "Notification", "TopicArn": "...", "Message": "<original>"}``.
- Routed (EventBridge-style) deliveries are pre-shaped by an input transformer
  on the routing rule: ``{"event": {...}, "eventBusName": "..."}``.

Anything else decodes to ``UnknownEnvelope`` and is never dispatched.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from message_observer.domain.error_messages import ErrorMessages
from message_observer.domain.errors import MalformedEnvelopeError
from message_observer.domain.models import ObservedMessage, SourceType

TOPIC_FIELD = "TopicArn"
TOPIC_PAYLOAD_FIELD = "Message"
BUS_FIELD = "eventBusName"
BUS_PAYLOAD_FIELD = "event"

# Integers beyond this lose precision as JavaScript numbers.
MAX_SAFE_INTEGER = 2**53 - 1
MAX_ARRAY_INDEX = 2**32 - 2


@dataclass(frozen=True, slots=True)
class BroadcastEnvelope:
    source_id: str
    inner_payload: str


@dataclass(frozen=True, slots=True)
class RoutedEventEnvelope:
    source_id: str
    inner_payload: str


@dataclass(frozen=True, slots=True)
class UnknownEnvelope:
    reason: str


Envelope = BroadcastEnvelope | RoutedEventEnvelope | UnknownEnvelope


def render_payload(value: Any) -> str:
    """
    Render a payload the way it is compared against observed messages.

    Strings are returned unchanged. Everything else is rendered as the text
    ``JSON.stringify`` produces for it: compact, insertion order kept except that
    array-index keys come first in ascending order, and numbers formatted as
    JavaScript formats them (``1e3`` becomes ``1000``, ``1e-7`` stays ``1e-7``).
    """
    if isinstance(value, str):
        return value
    return _render_json(value)


def _render_number(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        return "null"
    if value == 0:
        return "0"
    # repr() gives the shortest round-tripping digits, as JavaScript does.
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = "".join(map(str, digit_tuple))
    stripped = digits.rstrip("0")
    exponent += len(digits) - len(stripped)
    k = len(stripped)
    n = exponent + k

    if k <= n <= 21:
        text = stripped + "0" * (n - k)
    elif 0 < n <= 21:
        text = f"{stripped[:n]}.{stripped[n:]}"
    elif -6 < n <= 0:
        text = "0." + "0" * -n + stripped
    else:
        mantissa = stripped if k == 1 else f"{stripped[0]}.{stripped[1:]}"
        e = n - 1
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return f"-{text}" if sign else text


def _is_array_index(key: str) -> bool:
    if not (key.isascii() and key.isdigit()):
        return False
    return (key == "0" or not key.startswith("0")) and int(key) <= MAX_ARRAY_INDEX


def _render_json(value: Any) -> str:
    if value is None or isinstance(value, (str, bool)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return _render_number(float(value)) if abs(value) > MAX_SAFE_INTEGER else str(value)
    if isinstance(value, float):
        return _render_number(value)
    if isinstance(value, dict):
        items = [(k if isinstance(k, str) else json.dumps(k), v) for k, v in value.items()]
        indexed = sorted((item for item in items if _is_array_index(item[0])), key=lambda item: int(item[0]))
        named = [item for item in items if not _is_array_index(item[0])]
        members = (
            f"{json.dumps(k, ensure_ascii=False)}:{_render_json(v)}" for k, v in indexed + named
        )
        return "{" + ",".join(members) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_render_json(item) for item in value) + "]"
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_object(body: str | bytes) -> dict[str, Any] | UnknownEnvelope:
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return UnknownEnvelope(ErrorMessages.ENVELOPE_NOT_UTF8)
    try:
        decoded = json.loads(body)
    except ValueError:
        return UnknownEnvelope(ErrorMessages.ENVELOPE_NOT_JSON)
    if not isinstance(decoded, dict):
        return UnknownEnvelope(ErrorMessages.ENVELOPE_NOT_OBJECT)
    return decoded


def classify(body: str | bytes) -> Envelope:
    decoded = _decode_object(body)
    if isinstance(decoded, UnknownEnvelope):
        return decoded

    topic = decoded.get(TOPIC_FIELD)
    if isinstance(topic, str) and topic:
        message = decoded.get(TOPIC_PAYLOAD_FIELD)
        if not isinstance(message, str):
            return UnknownEnvelope(
                ErrorMessages.ENVELOPE_NO_PAYLOAD.format(field=TOPIC_PAYLOAD_FIELD)
            )
        return BroadcastEnvelope(source_id=topic, inner_payload=message)

    bus = decoded.get(BUS_FIELD)
    if isinstance(bus, str) and bus:
        if BUS_PAYLOAD_FIELD not in decoded or decoded[BUS_PAYLOAD_FIELD] is None:
            return UnknownEnvelope(
                ErrorMessages.ENVELOPE_NO_PAYLOAD.format(field=BUS_PAYLOAD_FIELD)
            )
        return RoutedEventEnvelope(
            source_id=bus,
            inner_payload=render_payload(decoded[BUS_PAYLOAD_FIELD]),
        )

    return UnknownEnvelope(ErrorMessages.ENVELOPE_UNKNOWN)


def to_observed(envelope: Envelope, message_id: str) -> ObservedMessage:
    match envelope:
        case BroadcastEnvelope(source_id=source_id, inner_payload=payload):
            source_type = SourceType.BROADCAST
        case RoutedEventEnvelope(source_id=source_id, inner_payload=payload):
            source_type = SourceType.ROUTED_EVENT
        case UnknownEnvelope(reason=reason):
            raise MalformedEnvelopeError(reason)
    return ObservedMessage(
        source_type=source_type,
        source_id=source_id,
        payload=payload,
        message_id=message_id,
    )
