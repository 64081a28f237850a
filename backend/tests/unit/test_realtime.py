"""
Unit tests for the in-process change hub.
"""
import pytest

from reviewhub.services.realtime import INSERT, RealtimeHub


@pytest.mark.unit
@pytest.mark.asyncio
async def test_publish_reaches_matching_subscribers_only():
    """Test publish reaches matching subscribers only."""
    hub = RealtimeHub()
    received = []

    async def listener(event, row):
        received.append((event, row["id"]))

    hub.subscribe("chat_messages", listener, where={"room_id": "a"})
    await hub.publish("chat_messages", INSERT, {"id": "1", "room_id": "a"})
    await hub.publish("chat_messages", INSERT, {"id": "2", "room_id": "b"})
    await hub.publish("chat_rooms", INSERT, {"id": "3", "room_id": "a"})

    assert received == [(INSERT, "1")]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent():
    """Test unsubscribe is idempotent."""
    hub = RealtimeHub()

    async def listener(event, row):
        pass

    unsubscribe = hub.subscribe("reviews", listener)
    assert hub.subscriber_count == 1

    unsubscribe()
    unsubscribe()
    assert hub.subscriber_count == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_subscriber_does_not_stop_others():
    """Test failing subscriber does not stop others."""
    hub = RealtimeHub()
    received = []

    async def broken(event, row):
        raise RuntimeError("boom")

    async def healthy(event, row):
        received.append(row["id"])

    hub.subscribe("reviews", broken)
    hub.subscribe("reviews", healthy)
    await hub.publish("reviews", INSERT, {"id": "r"})

    assert received == ["r"]
