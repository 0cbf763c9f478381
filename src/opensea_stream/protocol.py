"""Endpoints, event tags and topic naming for the OpenSea stream."""
from __future__ import annotations

from enum import Enum

COLLECTION_PREFIX = "collection:"
ALL_COLLECTIONS = "*"
HEARTBEAT_TOPIC = "phoenix"


class Network(str, Enum):
    """Stream endpoint selection.

    Mainnet covers the production chains, testnet the test chains (Sepolia,
    Amoy, Baobab).
    """

    MAINNET = "mainnet"
    TESTNET = "testnet"

    @property
    def url(self) -> str:
        return _ENDPOINTS[self]

    @classmethod
    def parse(cls, value: "Network | str") -> "Network":
        if isinstance(value, Network):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown network {value!r}; expected 'mainnet' or 'testnet'") from None


_ENDPOINTS = {
    Network.MAINNET: "wss://stream.openseabeta.com/socket/websocket",
    Network.TESTNET: "wss://testnets-stream.openseabeta.com/socket/websocket",
}


class EventType(str, Enum):
    """Vendor ``event_type`` tags with a typed payload."""

    ITEM_LISTED = "item_listed"
    ITEM_SOLD = "item_sold"
    ITEM_TRANSFERRED = "item_transferred"
    ITEM_METADATA_UPDATED = "item_metadata_updated"
    ITEM_CANCELLED = "item_cancelled"
    ITEM_RECEIVED_OFFER = "item_received_offer"
    ITEM_RECEIVED_BID = "item_received_bid"
    COLLECTION_OFFER = "collection_offer"
    TRAIT_OFFER = "trait_offer"
    ORDER_INVALIDATE = "order_invalidate"
    ORDER_REVALIDATE = "order_revalidate"


def normalize_topic(topic: str) -> str:
    """Trim a topic and strip the ``collection:`` channel prefix if present."""

    if not isinstance(topic, str):
        raise TypeError(f"topic must be a string, got {type(topic).__name__}")
    value = topic.strip()
    if value.startswith(COLLECTION_PREFIX):
        value = value[len(COLLECTION_PREFIX):].strip()
    if not value:
        raise ValueError("topic must not be empty")
    return value


def channel_for(topic: str) -> str:
    return f"{COLLECTION_PREFIX}{normalize_topic(topic)}"


def topic_for(channel: str) -> str:
    if channel.startswith(COLLECTION_PREFIX):
        return channel[len(COLLECTION_PREFIX):]
    return channel


__all__ = [
    "ALL_COLLECTIONS",
    "COLLECTION_PREFIX",
    "EventType",
    "HEARTBEAT_TOPIC",
    "Network",
    "channel_for",
    "normalize_topic",
    "topic_for",
]
