import uuid

import pytest

from vaultdrop.modules.notifications.broadcaster import TransferEventBroadcaster

@pytest.mark.asyncio
async def test_events_reach_every_open_stream_of_the_party():
    hub = TransferEventBroadcaster()
    buyer, seller = uuid.uuid4(), uuid.uuid4()
    first = await hub.connect(buyer)
    second = await hub.connect(buyer)
    other = await hub.connect(seller)

    delivered = await hub.broadcast(buyer, {"title": "Payment confirmed"})

    assert delivered == 2
    assert first.get_nowait() == {"title": "Payment confirmed"}
    assert second.get_nowait() == {"title": "Payment confirmed"}
    assert other.empty()

@pytest.mark.asyncio
async def test_offline_party_receives_nothing():
    hub = TransferEventBroadcaster()
    assert await hub.broadcast(uuid.uuid4(), {"title": "Access granted"}) == 0

@pytest.mark.asyncio
async def test_disconnect_drops_empty_party():
    hub = TransferEventBroadcaster()
    buyer = uuid.uuid4()
    queue = await hub.connect(buyer)

    await hub.disconnect(buyer, queue)
    await hub.disconnect(buyer, queue)

    assert buyer not in hub.streams
    assert await hub.broadcast(buyer, {"title": "Offer received"}) == 0

@pytest.mark.asyncio
async def test_full_stream_drops_oldest_event():
    hub = TransferEventBroadcaster(backlog=2)
    buyer = uuid.uuid4()
    queue = await hub.connect(buyer)

    for n in range(3):
        await hub.broadcast(buyer, {"title": f"event {n}"})

    assert [queue.get_nowait()["title"] for _ in range(2)] == ["event 1", "event 2"]
