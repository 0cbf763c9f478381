"""Typed event model for OpenSea stream payloads.

Every inbound event is validated here, at a single boundary, into either a
``StreamEvent`` (one of the known ``EventType`` variants with its typed
payload record) or an ``UnrecognizedEvent`` holding the raw payload of a tag
this client does not know yet.

Value conventions:

* prices are ``Decimal`` and never pass through ``float``;
* addresses are 20 raw bytes, order and transaction hashes 32 raw bytes;
* timestamps are timezone-aware UTC ``datetime`` values truncated to
  millisecond precision. Naive timestamps are read as UTC.
"""
from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import EventDecodeError
from .protocol import EventType

ADDRESS_BYTES = 20
HASH_BYTES = 32


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


def _parse_fixed_hex(value: Any, size: int, label: str) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if text[:2].lower() == "0x":
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"{label} is not valid hex") from None
    else:
        raise ValueError(f"{label} must be a hex string")
    if len(raw) != size:
        raise ValueError(f"{label} must be {size} bytes, got {len(raw)}")
    return raw


def _parse_address(value: Any) -> bytes:
    return _parse_fixed_hex(value, ADDRESS_BYTES, "address")


def _parse_account(value: Any) -> bytes:
    # Account fields arrive wrapped as {"address": "0x..."}.
    if isinstance(value, Mapping):
        if "address" not in value:
            raise ValueError("account object has no 'address'")
        value = value["address"]
    return _parse_address(value)


def _parse_hash(value: Any) -> bytes:
    return _parse_fixed_hex(value, HASH_BYTES, "hash")


def _parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError("price must be a decimal string, not a boolean")
    if isinstance(value, float):
        raise ValueError("price must be a decimal string, not a float")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, str)):
        try:
            parsed = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"invalid decimal {value!r}") from None
    else:
        raise ValueError("price must be a decimal string")
    if not parsed.is_finite():
        raise ValueError("price must be finite")
    return parsed


def _require_iso_text(value: Any) -> Any:
    # Lax datetime parsing would read numbers and digit strings as unix seconds.
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValueError("timestamp must be an ISO 8601 string")
    if value.strip().lstrip("-").replace(".", "", 1).isdigit():
        raise ValueError("timestamp must be an ISO 8601 string, not unix seconds")
    return value


def _to_utc_ms(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds")


def _parse_unix_seconds(value: Any) -> Any:
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError(f"unix timestamp {value} out of range") from None
    return value


def _unwrap_chain(value: Any) -> Any:
    if isinstance(value, Mapping):
        if "name" not in value:
            raise ValueError("chain object has no 'name'")
        return value["name"]
    return value


def _stringify(value: Any) -> Any:
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


Address = Annotated[bytes, BeforeValidator(_parse_address), PlainSerializer(_hex, return_type=str)]
AccountAddress = Annotated[
    bytes,
    BeforeValidator(_parse_account),
    PlainSerializer(lambda value: {"address": _hex(value)}, return_type=dict),
]
Hash32 = Annotated[bytes, BeforeValidator(_parse_hash), PlainSerializer(_hex, return_type=str)]
Price = Annotated[Decimal, BeforeValidator(_parse_decimal), PlainSerializer(str, return_type=str)]
UtcDatetime = Annotated[
    datetime,
    BeforeValidator(_require_iso_text),
    AfterValidator(_to_utc_ms),
    PlainSerializer(_format_timestamp, return_type=str),
]
UnixTimestamp = Annotated[
    datetime,
    BeforeValidator(_parse_unix_seconds),
    AfterValidator(_to_utc_ms),
    PlainSerializer(lambda value: str(int(value.timestamp())), return_type=str),
]
TraitValue = Annotated[Optional[str], BeforeValidator(_stringify)]


class Chain(str, Enum):
    """Network an item lives on."""

    AVALANCHE = "avalanche"
    BASE = "base"
    BSC = "bsc"
    ETHEREUM = "ethereum"
    OPTIMISM = "optimism"
    ARBITRUM = "arbitrum"
    ARBITRUM_NOVA = "arbitrum_nova"
    POLYGON = "matic"
    KLAYTN = "klaytn"
    SOLANA = "solana"
    ZORA = "zora"
    GOERLI = "goerli"
    SEPOLIA = "sepolia"
    MUMBAI = "mumbai"
    AMOY = "amoy"
    BAOBAB = "baobab"


ChainField = Annotated[
    Chain,
    BeforeValidator(_unwrap_chain),
    PlainSerializer(lambda value: {"name": value.value}, return_type=dict),
]


class ListingType(str, Enum):
    ENGLISH = "english"
    DUTCH = "dutch"


class _Record(BaseModel):
    model_config = {
        "frozen": True,
        "extra": "ignore",
    }


class Collection(_Record):
    slug: str


class NftId(_Record):
    """``<chain>/<contract>/<token id>`` identifier of a single item."""

    chain: Chain
    contract: Address
    token_id: str

    @model_validator(mode="before")
    @classmethod
    def _parse(cls, value: Any) -> Any:
        if isinstance(value, str):
            parts = value.split("/", 2)
            if len(parts) != 3 or not parts[2]:
                raise ValueError("nft_id must look like '<chain>/<contract>/<token id>'")
            return {"chain": parts[0], "contract": parts[1], "token_id": parts[2]}
        return value

    @model_serializer
    def _serialize(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"{self.chain.value}/{_hex(self.contract)}/{self.token_id}"


class Trait(_Record):
    trait_type: str
    value: TraitValue = None
    display_type: Optional[str] = None
    max_value: Optional[int] = None
    trait_count: Optional[int] = None
    order: Optional[int] = None


class Metadata(_Record):
    """Item metadata as published by the token contract."""

    animation_url: Optional[str] = None
    background_color: Optional[str] = None
    description: Optional[str] = None
    image_preview_url: Optional[str] = None
    image_url: Optional[str] = None
    metadata_url: Optional[str] = None
    external_link: Optional[str] = None
    name: Optional[str] = None
    traits: Optional[list[Trait]] = None


class Item(_Record):
    nft_id: Optional[NftId] = None
    permalink: Optional[str] = None
    chain: Optional[ChainField] = None
    metadata: Optional[Metadata] = None


class Transaction(_Record):
    hash: Hash32
    timestamp: UtcDatetime


class PaymentToken(_Record):
    """Token used for payment; ``decimals`` gives the unit of the price fields."""

    address: Address
    decimals: int
    eth_price: Price
    name: str
    symbol: str
    usd_price: Price


class Consideration(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_type: int
    token: Address
    identifier_or_criteria: str
    start_amount: str
    end_amount: Optional[str] = None
    recipient: Address


class Offer(_Record):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    item_type: int
    token: Address
    identifier_or_criteria: str
    start_amount: str
    end_amount: str


class Parameters(_Record):
    """Seaport order parameters carried in ``protocol_data``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    conduit_key: str
    consideration: list[Consideration]
    counter: Union[int, str]
    end_time: UnixTimestamp
    offer: list[Offer]
    offerer: Address
    order_type: int
    salt: str
    start_time: UnixTimestamp
    total_original_consideration_items: int
    zone: Address
    zone_hash: str


class ProtocolData(_Record):
    parameters: Parameters
    signature: Optional[str] = None


class CollectionCriteria(_Record):
    slug: str


class TraitCriteria(_Record):
    trait_name: str
    trait_type: str


class ItemListedData(_Record):
    collection: Collection
    item: Item
    event_timestamp: UtcDatetime
    base_price: Price = Field(..., description="Starting price in units of payment_token.")
    expiration_date: UtcDatetime
    is_private: bool
    listing_date: UtcDatetime
    listing_type: Optional[ListingType] = None
    maker: AccountAddress
    order_hash: Hash32
    payment_token: PaymentToken
    protocol_data: Optional[ProtocolData] = None
    quantity: Optional[int] = None
    taker: Optional[AccountAddress] = None


class ItemSoldData(_Record):
    collection: Collection
    item: Item
    closing_date: UtcDatetime
    event_timestamp: UtcDatetime
    is_private: bool
    listing_type: Optional[ListingType] = None
    maker: AccountAddress
    order_hash: Hash32
    payment_token: PaymentToken
    quantity: int
    sale_price: Price
    taker: AccountAddress
    transaction: Transaction


class ItemTransferredData(_Record):
    collection: Collection
    event_timestamp: UtcDatetime
    from_account: AccountAddress
    item: Item
    quantity: Optional[int] = None
    to_account: AccountAddress
    transaction: Optional[Transaction] = None


class ItemMetadataUpdatedData(_Record):
    collection: Collection
    item: Item


class ItemCancelledData(_Record):
    base_price: Price
    collection: Collection
    event_timestamp: UtcDatetime
    is_private: bool
    item: Item
    listing_date: Optional[UtcDatetime] = None
    listing_type: Optional[ListingType] = None
    maker: Optional[AccountAddress] = None
    order_hash: Hash32
    payment_token: PaymentToken
    quantity: int
    transaction: Optional[Transaction] = None


class _ItemOfferFields(_Record):
    collection: Collection
    item: Item
    event_timestamp: UtcDatetime
    base_price: Price
    created_date: UtcDatetime
    expiration_date: UtcDatetime
    maker: AccountAddress
    order_hash: Hash32
    payment_token: PaymentToken
    quantity: int
    taker: Optional[AccountAddress] = None


class ItemReceivedOfferData(_ItemOfferFields):
    pass


class ItemReceivedBidData(_ItemOfferFields):
    pass


class _CriteriaOfferFields(_Record):
    asset_contract_criteria: AccountAddress
    base_price: Price
    collection: Collection
    collection_criteria: CollectionCriteria
    created_date: UtcDatetime
    event_timestamp: UtcDatetime
    expiration_date: UtcDatetime
    maker: AccountAddress
    order_hash: Hash32
    payment_token: PaymentToken
    protocol_address: Address
    protocol_data: Optional[ProtocolData] = None
    quantity: int
    taker: Optional[AccountAddress] = None


class CollectionOfferData(_CriteriaOfferFields):
    pass


class TraitOfferData(_CriteriaOfferFields):
    trait_criteria: TraitCriteria


class OrderInvalidateData(_Record):
    chain: ChainField
    collection: Collection
    event_timestamp: UtcDatetime
    item: Item
    order_hash: Optional[Hash32] = None
    protocol_address: Address


class OrderRevalidateData(_Record):
    chain: ChainField
    collection: Collection
    event_timestamp: UtcDatetime
    item: Item
    order_hash: Hash32
    protocol_address: Address


EventPayload = Union[
    ItemListedData,
    ItemSoldData,
    ItemTransferredData,
    ItemMetadataUpdatedData,
    ItemCancelledData,
    ItemReceivedOfferData,
    ItemReceivedBidData,
    CollectionOfferData,
    TraitOfferData,
    OrderInvalidateData,
    OrderRevalidateData,
]

PAYLOAD_MODELS: dict[EventType, type[_Record]] = {
    EventType.ITEM_LISTED: ItemListedData,
    EventType.ITEM_SOLD: ItemSoldData,
    EventType.ITEM_TRANSFERRED: ItemTransferredData,
    EventType.ITEM_METADATA_UPDATED: ItemMetadataUpdatedData,
    EventType.ITEM_CANCELLED: ItemCancelledData,
    EventType.ITEM_RECEIVED_OFFER: ItemReceivedOfferData,
    EventType.ITEM_RECEIVED_BID: ItemReceivedBidData,
    EventType.COLLECTION_OFFER: CollectionOfferData,
    EventType.TRAIT_OFFER: TraitOfferData,
    EventType.ORDER_INVALIDATE: OrderInvalidateData,
    EventType.ORDER_REVALIDATE: OrderRevalidateData,
}


class StreamEvent(BaseModel):
    """A decoded event of a known type, tagged with the topic it arrived on."""

    model_config = {"frozen": True}

    topic: str
    event_type: EventType
    sent_at: UtcDatetime
    payload: EventPayload


class UnrecognizedEvent(BaseModel):
    """An event whose ``event_type`` has no typed variant; the payload is kept raw."""

    model_config = {"frozen": True}

    topic: str
    event_type: str
    sent_at: Optional[UtcDatetime] = None
    payload: dict[str, Any] = Field(default_factory=dict)


Event = Union[StreamEvent, UnrecognizedEvent]


def _decode_error(exc: ValidationError, raw: Any, prefix: str = "") -> EventDecodeError:
    first = exc.errors()[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    field = ".".join(part for part in (prefix, loc) if part) or None
    message = f"invalid event field {field or '<root>'}: {first.get('msg')}"
    return EventDecodeError(message, raw=raw, field=field)


def decode_event(topic: str, envelope: Any) -> Event:
    """Validate one vendor event envelope into a typed event.

    Raises ``EventDecodeError`` naming the failing field when a required field
    is missing or malformed. Unknown ``event_type`` tags become
    ``UnrecognizedEvent`` rather than an error.
    """

    if not isinstance(envelope, Mapping):
        raise EventDecodeError("event envelope must be a JSON object", raw=envelope)
    tag = envelope.get("event_type")
    if not isinstance(tag, str) or not tag:
        raise EventDecodeError("event envelope has no event_type", raw=envelope, field="event_type")

    try:
        event_type = EventType(tag)
    except ValueError:
        try:
            return UnrecognizedEvent.model_validate(
                {
                    "topic": topic,
                    "event_type": tag,
                    "sent_at": envelope.get("sent_at"),
                    "payload": envelope.get("payload") or {},
                }
            )
        except ValidationError as exc:
            raise _decode_error(exc, envelope) from exc

    model = PAYLOAD_MODELS[event_type]
    try:
        payload = model.model_validate(envelope.get("payload"))
    except ValidationError as exc:
        raise _decode_error(exc, envelope, prefix="payload") from exc
    try:
        return StreamEvent(
            topic=topic,
            event_type=event_type,
            sent_at=envelope.get("sent_at"),
            payload=payload,
        )
    except ValidationError as exc:
        raise _decode_error(exc, envelope) from exc


def encode_event(event: Event) -> dict[str, Any]:
    """Render an event back into the vendor envelope shape (JSON-compatible)."""

    if isinstance(event, StreamEvent):
        payload = event.payload.model_dump(mode="json", by_alias=True)
        event_type = event.event_type.value
    else:
        payload = event.model_dump(mode="json")["payload"]
        event_type = event.event_type
    return {
        "event_type": event_type,
        "payload": payload,
        "sent_at": _format_timestamp(event.sent_at) if event.sent_at is not None else None,
    }


__all__ = [
    "AccountAddress",
    "Address",
    "Chain",
    "Collection",
    "CollectionCriteria",
    "CollectionOfferData",
    "Consideration",
    "Event",
    "EventPayload",
    "Hash32",
    "Item",
    "ItemCancelledData",
    "ItemListedData",
    "ItemMetadataUpdatedData",
    "ItemReceivedBidData",
    "ItemReceivedOfferData",
    "ItemSoldData",
    "ItemTransferredData",
    "ListingType",
    "Metadata",
    "NftId",
    "Offer",
    "OrderInvalidateData",
    "OrderRevalidateData",
    "PAYLOAD_MODELS",
    "Parameters",
    "PaymentToken",
    "Price",
    "ProtocolData",
    "StreamEvent",
    "Trait",
    "TraitCriteria",
    "TraitOfferData",
    "Transaction",
    "UnrecognizedEvent",
    "UtcDatetime",
    "decode_event",
    "encode_event",
]
