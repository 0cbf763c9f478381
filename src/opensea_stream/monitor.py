"""Print per-second event rates for the configured topics.

Reads ``OPENSEA_STREAM_API_KEY``, ``OPENSEA_STREAM_NETWORK`` and
``OPENSEA_STREAM_TOPICS`` from the environment (or ``.env``).
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
import time
from collections import Counter
from typing import Callable, Optional, TextIO

from .client import StreamClient, connect
from .config import Settings, get_settings
from .errors import AuthError
from .logging_config import configure_logging
from .models import Event, StreamEvent
from .protocol import EventType

LOGGER = logging.getLogger(__name__)

COLUMNS: list[tuple[str, str]] = [
    ("listings", EventType.ITEM_LISTED.value),
    ("sold", EventType.ITEM_SOLD.value),
    ("transfer", EventType.ITEM_TRANSFERRED.value),
    ("metadata", EventType.ITEM_METADATA_UPDATED.value),
    ("cancel", EventType.ITEM_CANCELLED.value),
    ("offer", EventType.ITEM_RECEIVED_OFFER.value),
    ("bid", EventType.ITEM_RECEIVED_BID.value),
    ("c_offer", EventType.COLLECTION_OFFER.value),
    ("t_offer", EventType.TRAIT_OFFER.value),
    ("invalid", EventType.ORDER_INVALIDATE.value),
    ("revalid", EventType.ORDER_REVALIDATE.value),
]


class RateCounter:
    """Counts events per type since ``started``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.started = clock()
        self.counts: Counter[str] = Counter()

    def __call__(self, event: Event) -> None:
        key = event.event_type.value if isinstance(event, StreamEvent) else "other"
        self.counts[key] += 1

    def rates(self) -> dict[str, float]:
        elapsed = max(self._clock() - self.started, 1e-9)
        rates = {name: self.counts.get(tag, 0) / elapsed for name, tag in COLUMNS}
        rates["total"] = sum(self.counts.values()) / elapsed
        return rates

    @staticmethod
    def header() -> str:
        return " | ".join(f"{name:>8}" for name, _ in COLUMNS + [("total", "")])

    def row(self) -> str:
        return " | ".join(f"{rate:>6.2f}/s" for rate in self.rates().values())


async def report(counter: RateCounter, out: TextIO, interval: float = 1.0) -> None:
    print(counter.header(), file=out, flush=True)
    while True:
        await asyncio.sleep(interval)
        print(counter.row(), file=out, flush=True)


async def monitor(settings: Settings, out: TextIO, client: Optional[StreamClient] = None) -> None:
    client = client or connect(settings.api_key, settings.network, settings=settings)
    counter = RateCounter()
    for topic in settings.topics:
        client.subscribe(topic, counter)
    reporter = asyncio.create_task(report(counter, out))
    try:
        await client.run()
    finally:
        reporter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reporter
        await client.shutdown()
        LOGGER.info("Stream stats: %s", client.stats.snapshot())


def main() -> None:
    settings = get_settings()
    configure_logging(log_level=settings.log_level)
    if not settings.api_key:
        LOGGER.error("OPENSEA_STREAM_API_KEY is not set")
        raise SystemExit(2)
    try:
        asyncio.run(monitor(settings, sys.stdout))
    except AuthError as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
