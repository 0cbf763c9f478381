from datetime import datetime, timezone
from decimal import Decimal

import pytest

from opensea_stream.errors import EventDecodeError
from opensea_stream.models import (
    Chain,
    ItemListedData,
    ItemMetadataUpdatedData,
    StreamEvent,
    UnrecognizedEvent,
    decode_event,
    encode_event,
)
from opensea_stream.protocol import EventType

from conftest import BAYC, MAKER, ORDER_HASH


def test_item_listed_decodes_typed_fields(listing_envelope):
    event = decode_event("bayc", listing_envelope())

    assert isinstance(event, StreamEvent)
    assert event.event_type is EventType.ITEM_LISTED
    assert event.topic == "bayc"
    payload = event.payload
    assert isinstance(payload, ItemListedData)
    assert payload.base_price == Decimal("1.5")
    assert isinstance(payload.base_price, Decimal)
    assert payload.payment_token.usd_price == Decimal("1830.369999999999891000")
    assert payload.maker == bytes.fromhex(MAKER[2:])
    assert len(payload.order_hash) == 32
    assert payload.order_hash == bytes.fromhex(ORDER_HASH[2:])
    assert payload.collection.slug == "bayc"
    assert payload.item.chain is Chain.ETHEREUM
    assert payload.item.nft_id.contract == bytes.fromhex(BAYC[2:])
    assert payload.item.nft_id.token_id == "1234"
    assert payload.item.metadata.traits[1].value == "17"
    assert payload.protocol_data.parameters.start_time == datetime(2023, 8, 1, 22, 39, 31, tzinfo=timezone.utc)


def test_timestamps_are_utc_with_millisecond_precision(listing_envelope):
    event = decode_event("bayc", listing_envelope())

    assert event.sent_at == datetime(2023, 8, 1, 22, 39, 32, 33000, tzinfo=timezone.utc)
    assert event.payload.event_timestamp.microsecond == 123000
    assert event.payload.event_timestamp.tzinfo == timezone.utc


def test_offset_timestamps_are_converted_to_utc(listing_envelope):
    envelope = listing_envelope()
    envelope["payload"]["listing_date"] = "2023-08-02T00:39:31+02:00"
    envelope["sent_at"] = "2023-08-01T22:39:32"

    event = decode_event("bayc", envelope)

    assert event.payload.listing_date == datetime(2023, 8, 1, 22, 39, 31, tzinfo=timezone.utc)
    assert event.sent_at.tzinfo == timezone.utc


def test_invalid_calendar_date_is_an_error(listing_envelope):
    envelope = listing_envelope()
    envelope["payload"]["event_timestamp"] = "2023-02-30T10:00:00+00:00"

    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", envelope)
    assert excinfo.value.field == "payload.event_timestamp"
    assert excinfo.value.raw is envelope


def test_missing_required_field_names_the_field(listing_envelope):
    envelope = listing_envelope()
    del envelope["payload"]["maker"]

    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", envelope)
    assert excinfo.value.field == "payload.maker"


def test_float_price_is_rejected(listing_envelope):
    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", listing_envelope(price=1.5))
    assert excinfo.value.field == "payload.base_price"


def test_short_address_is_rejected(listing_envelope):
    envelope = listing_envelope()
    envelope["payload"]["maker"] = {"address": "0x1234"}

    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", envelope)
    assert excinfo.value.field == "payload.maker"


def test_optional_fields_default_to_none(listing_envelope):
    envelope = listing_envelope()
    for key in ("protocol_data", "quantity", "taker", "listing_type"):
        envelope["payload"].pop(key)

    event = decode_event("bayc", envelope)

    assert event.payload.protocol_data is None
    assert event.payload.quantity is None
    assert event.payload.taker is None


def test_unknown_event_type_becomes_unrecognized():
    envelope = {"event_type": "item_burned", "payload": {"foo": 1}, "sent_at": "2024-01-01T00:00:00+00:00"}

    event = decode_event("bayc", envelope)

    assert isinstance(event, UnrecognizedEvent)
    assert event.event_type == "item_burned"
    assert event.payload == {"foo": 1}


def test_missing_event_type_is_an_error():
    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", {"payload": {}})
    assert excinfo.value.field == "event_type"


def test_metadata_update_from_polygon(metadata_envelope):
    event = decode_event("neon-vortex-1", metadata_envelope)

    assert isinstance(event.payload, ItemMetadataUpdatedData)
    assert event.payload.item.chain is Chain.POLYGON
    assert str(event.payload.item.nft_id) == "matic/0x978c92725bb4f87c1da3ba2e8b7c11a24e6aa0a5/3101"
    assert event.payload.item.metadata.traits[0].value == "Navy"


@pytest.mark.parametrize("fixture_name", ["listing_envelope", "metadata_envelope"])
def test_decode_encode_decode_is_stable(request, fixture_name):
    value = request.getfixturevalue(fixture_name)
    envelope = value() if callable(value) else value

    first = decode_event("bayc", envelope)
    second = decode_event("bayc", encode_event(first))

    assert second == first


def test_encoded_listing_uses_vendor_shapes(listing_envelope):
    encoded = encode_event(decode_event("bayc", listing_envelope()))

    assert encoded["event_type"] == "item_listed"
    assert encoded["payload"]["base_price"] == "1.5"
    assert encoded["payload"]["maker"] == {"address": MAKER}
    assert encoded["payload"]["item"]["chain"] == {"name": "ethereum"}
    assert encoded["payload"]["protocol_data"]["parameters"]["startTime"] == "1690929571"
    assert encoded["sent_at"] == "2023-08-01T22:39:32.033+00:00"


def test_item_transferred_with_transaction():
    envelope = {
        "event_type": "item_transferred",
        "sent_at": "2023-08-01T22:40:00+00:00",
        "payload": {
            "collection": {"slug": "bayc"},
            "event_timestamp": "2023-08-01T22:39:58.000000+00:00",
            "from_account": {"address": MAKER},
            "to_account": {"address": "0x" + "34" * 20},
            "item": {"nft_id": f"ethereum/{BAYC}/77", "chain": {"name": "ethereum"}},
            "quantity": 1,
            "transaction": {"hash": ORDER_HASH, "timestamp": "2023-08-01T22:39:57.999999+00:00"},
        },
    }

    event = decode_event("bayc", envelope)

    assert event.event_type is EventType.ITEM_TRANSFERRED
    assert event.payload.to_account == bytes.fromhex("34" * 20)
    assert event.payload.transaction.timestamp.microsecond == 999000


def test_order_invalidate_allows_missing_order_hash():
    envelope = {
        "event_type": "order_invalidate",
        "sent_at": "2023-08-01T22:40:00+00:00",
        "payload": {
            "chain": {"name": "base"},
            "collection": {"slug": "bayc"},
            "event_timestamp": "2023-08-01T22:39:58+00:00",
            "item": {},
            "protocol_address": "0x00000000000000adc04c56bf30ac9d3c0aaf14dc",
        },
    }

    event = decode_event("bayc", envelope)

    assert event.event_type is EventType.ORDER_INVALIDATE
    assert event.payload.chain is Chain.BASE
    assert event.payload.order_hash is None
    assert event.payload.item.nft_id is None


@pytest.mark.parametrize("value", [1690929571, 1690929571.5, "1690929571"])
def test_iso_timestamp_fields_reject_unix_seconds(listing_envelope, value):
    envelope = listing_envelope()
    envelope["payload"]["event_timestamp"] = value

    with pytest.raises(EventDecodeError) as excinfo:
        decode_event("bayc", envelope)
    assert excinfo.value.field == "payload.event_timestamp"
