"""Phoenix channel frame codec.

OpenSea's stream speaks Phoenix channels (V1 JSON serializer): every frame
is an object ``{"topic", "event", "payload", "ref"}``. Control events are
prefixed ``phx_``; everything else on a ``collection:`` channel is a
marketplace event envelope.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Union

from .errors import EventDecodeError, FrameDecodeError
from .models import Event, decode_event
from .protocol import HEARTBEAT_TOPIC, channel_for, normalize_topic, topic_for


class Action(str, Enum):
    SUBSCRIBE = "phx_join"
    UNSUBSCRIBE = "phx_leave"
    HEARTBEAT = "heartbeat"


REPLY_EVENT = "phx_reply"
ERROR_EVENT = "phx_error"
CLOSE_EVENT = "phx_close"


@dataclass(frozen=True)
class ControlFrame:
    """Client-originated control request (join, leave or heartbeat)."""

    action: Action
    topic: str
    ref: Optional[str] = None

    @property
    def channel(self) -> str:
        if self.action is Action.HEARTBEAT:
            return HEARTBEAT_TOPIC
        return channel_for(self.topic)


@dataclass(frozen=True)
class ControlReply:
    """``phx_reply`` acknowledgement of a join, leave or heartbeat."""

    topic: str
    ref: Optional[str]
    status: str
    response: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def reason(self) -> Optional[str]:
        reason = self.response.get("reason") if isinstance(self.response, Mapping) else None
        return str(reason) if reason is not None else None


@dataclass(frozen=True)
class ChannelClosed:
    """Server-side ``phx_error`` or ``phx_close`` for a channel."""

    topic: str
    reason: str
    ref: Optional[str] = None


@dataclass(frozen=True)
class EventFrame:
    topic: str
    event: Event


InboundFrame = Union[ControlReply, ChannelClosed, ControlFrame, EventFrame]


def subscribe_frame(topic: str, ref: Optional[str] = None) -> ControlFrame:
    return ControlFrame(Action.SUBSCRIBE, normalize_topic(topic), ref)


def unsubscribe_frame(topic: str, ref: Optional[str] = None) -> ControlFrame:
    return ControlFrame(Action.UNSUBSCRIBE, normalize_topic(topic), ref)


def heartbeat_frame(ref: Optional[str] = None) -> ControlFrame:
    return ControlFrame(Action.HEARTBEAT, HEARTBEAT_TOPIC, ref)


def encode_frame(frame: ControlFrame) -> str:
    """Serialize a control request to the Phoenix wire shape."""

    return json.dumps(
        {
            "topic": frame.channel,
            "event": frame.action.value,
            "payload": {},
            "ref": frame.ref,
        },
        separators=(",", ":"),
    )


def _load(raw: Union[str, bytes, bytearray]) -> Mapping[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FrameDecodeError(f"frame is not UTF-8: {exc}", raw=raw) from exc
    if not isinstance(raw, str):
        raise FrameDecodeError(f"unsupported frame type {type(raw).__name__}", raw=raw)
    try:
        message = json.loads(raw, parse_float=Decimal)
    except ValueError as exc:
        raise FrameDecodeError(f"frame is not valid JSON: {exc}", raw=raw) from exc
    if not isinstance(message, dict):
        raise FrameDecodeError("frame is not a JSON object", raw=raw)
    return message


def _ref(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def decode_frame(raw: Union[str, bytes, bytearray]) -> InboundFrame:
    """Decode one inbound frame.

    Control acknowledgements are tried first; anything else is treated as an
    event envelope. Raises ``FrameDecodeError`` for bytes that are not a JSON
    object and ``EventDecodeError`` for envelopes failing schema validation.
    """

    message = _load(raw)
    channel = message.get("topic")
    event = message.get("event")
    if not isinstance(channel, str) or not isinstance(event, str):
        raise FrameDecodeError("frame lacks string 'topic' and 'event'", raw=raw)
    payload = message.get("payload")
    ref = _ref(message.get("ref"))
    topic = topic_for(channel)

    if event == REPLY_EVENT:
        if not isinstance(payload, Mapping):
            raise FrameDecodeError("phx_reply without payload object", raw=raw)
        response = payload.get("response")
        return ControlReply(
            topic=topic,
            ref=ref,
            status=str(payload.get("status", "")),
            response=response if isinstance(response, Mapping) else {},
        )
    if event in (ERROR_EVENT, CLOSE_EVENT):
        reason = payload.get("reason") if isinstance(payload, Mapping) else None
        return ChannelClosed(topic=topic, reason=str(reason or event), ref=ref)
    if event in (Action.SUBSCRIBE.value, Action.UNSUBSCRIBE.value, Action.HEARTBEAT.value):
        return ControlFrame(Action(event), topic, ref)

    if not isinstance(payload, Mapping):
        raise EventDecodeError("event frame without payload object", raw=raw, field="payload")
    envelope = payload if "event_type" in payload else {**payload, "event_type": event}
    return EventFrame(topic=topic, event=decode_event(topic, envelope))


__all__ = [
    "Action",
    "ChannelClosed",
    "ControlFrame",
    "ControlReply",
    "EventFrame",
    "InboundFrame",
    "decode_frame",
    "encode_frame",
    "heartbeat_frame",
    "subscribe_frame",
    "unsubscribe_frame",
]
