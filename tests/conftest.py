import copy

import pytest

MAKER = "0x" + "12" * 20
ZERO = "0x" + "00" * 20
BAYC = "0xbc4ca0eda7647a8ab7c2061c2e118a18a936f13d"
ORDER_HASH = "0x" + "ab" * 32

_LISTING = {
    "event_type": "item_listed",
    "sent_at": "2023-08-01T22:39:32.033948+00:00",
    "payload": {
        "collection": {"slug": "bayc"},
        "item": {
            "chain": {"name": "ethereum"},
            "nft_id": f"ethereum/{BAYC}/1234",
            "permalink": f"https://opensea.io/assets/ethereum/{BAYC}/1234",
            "metadata": {
                "name": "Bored Ape #1234",
                "image_url": "https://i.seadn.io/gae/ape.png",
                "animation_url": None,
                "metadata_url": "ipfs://QmeSjSinHpPnmXmspMjwiXyN6zS4E9zccariGR3jxcaWtq/1234",
                "traits": [
                    {"trait_type": "Fur", "value": "Golden Brown", "display_type": None,
                     "max_value": None, "trait_count": 0, "order": None},
                    {"trait_type": "Rank", "value": 17, "display_type": "number",
                     "max_value": 10000, "trait_count": 0, "order": None},
                ],
            },
        },
        "event_timestamp": "2023-08-01T22:39:31.123456+00:00",
        "base_price": "1.5",
        "expiration_date": "2023-09-01T00:00:00.000000+00:00",
        "is_private": False,
        "listing_date": "2023-08-01T22:39:31.000000+00:00",
        "listing_type": None,
        "maker": {"address": MAKER},
        "order_hash": ORDER_HASH,
        "payment_token": {
            "address": ZERO,
            "decimals": 18,
            "eth_price": "1.000000000000000",
            "name": "Ether",
            "symbol": "ETH",
            "usd_price": "1830.369999999999891000",
        },
        "protocol_data": {
            "parameters": {
                "conduitKey": "0x0000007b02230091a7ed01230072f7006a004d60a8d4e71d599b8104250f0000",
                "consideration": [
                    {
                        "endAmount": "1462500000000000000",
                        "identifierOrCriteria": "0",
                        "itemType": 0,
                        "recipient": MAKER,
                        "startAmount": "1462500000000000000",
                        "token": ZERO,
                    }
                ],
                "counter": 0,
                "endTime": "1693526400",
                "offer": [
                    {
                        "endAmount": "1",
                        "identifierOrCriteria": "1234",
                        "itemType": 2,
                        "startAmount": "1",
                        "token": BAYC,
                    }
                ],
                "offerer": MAKER,
                "orderType": 0,
                "salt": "0x360c6ebe",
                "startTime": "1690929571",
                "totalOriginalConsiderationItems": 1,
                "zone": ZERO,
                "zoneHash": "0x" + "00" * 32,
            },
            "signature": None,
        },
        "quantity": 1,
        "taker": None,
    },
}

_METADATA_UPDATE = {
    "event_type": "item_metadata_updated",
    "payload": {
        "collection": {"slug": "neon-vortex-1"},
        "item": {
            "chain": {"name": "matic"},
            "metadata": {
                "animation_url": None,
                "background_color": None,
                "description": "Neon Vortex NFT coming to unleash dark powers on the Solana",
                "image_url": "https://i.seadn.io/gcs/files/ece163487759d6aa6c768ad9c3aa940b.jpg?w=500&auto=format",
                "metadata_url": "ipfs://bafybeigl23jahosbp7dprqckp72upyl6ivvekextxe4inrz7h3hkiwqydi/3101.json",
                "name": "Neon Vortex #619",
                "traits": [
                    {"display_type": None, "max_value": None, "order": None, "trait_count": 0,
                     "trait_type": "Eyes", "value": "Navy"},
                    {"display_type": "number", "max_value": 3333, "order": None, "trait_count": 0,
                     "trait_type": "Rarity Rank", "value": None},
                ],
            },
            "nft_id": "matic/0x978c92725bb4f87c1da3ba2e8b7c11a24e6aa0a5/3101",
            "permalink": "https://opensea.io/assets/matic/0x978c92725bb4f87c1da3ba2e8b7c11a24e6aa0a5/3101",
        },
    },
    "sent_at": "2023-08-01T22:39:32.033948+00:00",
}


@pytest.fixture
def listing_envelope():
    def build(price="1.5", slug="bayc"):
        envelope = copy.deepcopy(_LISTING)
        envelope["payload"]["base_price"] = price
        envelope["payload"]["collection"]["slug"] = slug
        return envelope

    return build


@pytest.fixture
def metadata_envelope():
    return copy.deepcopy(_METADATA_UPDATE)


@pytest.fixture
def event_frame():
    def build(slug, envelope, event=None):
        return {
            "topic": f"collection:{slug}",
            "event": event or envelope["event_type"],
            "payload": envelope,
            "ref": None,
        }

    return build
