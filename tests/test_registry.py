import pytest

from opensea_stream.models import UnrecognizedEvent
from opensea_stream.observability import ClientStats
from opensea_stream.registry import ChannelRegistry, DispatchResult, SubscriptionId


def _event(topic="bayc", tag="item_burned"):
    return UnrecognizedEvent(topic=topic, event_type=tag, payload={})


def _registry():
    return ChannelRegistry(ClientStats(metrics=False))


@pytest.mark.asyncio
async def test_second_subscribe_replaces_first_handler():
    registry = _registry()
    first, second = [], []
    registry.subscribe("bayc", first.append)
    registry.subscribe("bayc", second.append)

    result = await registry.dispatch("bayc", _event())

    assert result is DispatchResult.DELIVERED
    assert first == []
    assert len(second) == 1
    assert len(registry) == 1


@pytest.mark.asyncio
async def test_stale_unsubscribe_is_a_noop():
    registry = _registry()
    received = []
    old = registry.subscribe("bayc", received.append)
    registry.subscribe("bayc", received.append)

    assert registry.unsubscribe(old) is False
    assert "bayc" in registry
    await registry.dispatch("bayc", _event())
    assert len(received) == 1


def test_unsubscribe_removes_topic():
    registry = _registry()
    sub = registry.subscribe("collection:bayc", lambda event: None)

    assert sub.topic == "bayc"
    assert registry.unsubscribe(sub) is True
    assert registry.unsubscribe(sub) is False
    assert registry.topics() == frozenset()


def test_subscription_id_must_match_topic():
    registry = _registry()

    with pytest.raises(ValueError):
        registry.subscribe("bayc", print, SubscriptionId.new("azuki"))


def test_subscribe_rejects_non_callable():
    with pytest.raises(TypeError):
        _registry().subscribe("bayc", "not a handler")


@pytest.mark.asyncio
async def test_unrouted_event_is_counted():
    registry = _registry()
    registry.subscribe("bayc", lambda event: None)

    result = await registry.dispatch("azuki", _event("azuki"))

    assert result is DispatchResult.UNROUTED
    assert registry.stats.events_unrouted == 1


@pytest.mark.asyncio
async def test_handler_error_is_contained():
    registry = _registry()
    calls = []

    def handler(event):
        calls.append(event)
        if len(calls) == 1:
            raise RuntimeError("boom")

    registry.subscribe("bayc", handler)

    assert await registry.dispatch("bayc", _event()) is DispatchResult.FAILED
    assert await registry.dispatch("bayc", _event()) is DispatchResult.DELIVERED
    assert len(calls) == 2
    assert registry.stats.handler_errors == 1
    assert registry.last_handler_error.topic == "bayc"
    assert isinstance(registry.last_handler_error.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_coroutine_handlers_are_awaited():
    registry = _registry()
    received = []

    async def handler(event):
        received.append(event)

    registry.subscribe("bayc", handler)
    await registry.dispatch("bayc", _event())

    assert len(received) == 1


def test_confirmations_follow_registrations():
    registry = _registry()
    sub = registry.subscribe("bayc", print)
    registry.confirm("bayc")
    registry.confirm("azuki")

    assert registry.is_confirmed("bayc")
    assert not registry.is_confirmed("azuki")
    registry.unsubscribe(sub)
    assert not registry.is_confirmed("bayc")
