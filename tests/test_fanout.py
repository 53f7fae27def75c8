import json

from fanout import QueueFanout, updates_channel


def test_listen_relays_emitted_events(redis_client):
    fanout = QueueFanout(redis_client)
    stream = fanout.listen("loc-1", timeout=0.05)

    assert next(stream) is None  # subscribed, nothing yet
    fanout.emit("loc-1", {"type": "emptied", "cleared": 3})

    event = None
    for _ in range(20):
        event = next(stream)
        if event is not None:
            break
    stream.close()

    data = json.loads(event)
    assert data["type"] == "emptied"
    assert data["cleared"] == 3
    assert data["locationId"] == "loc-1"
    assert "timestamp" in data


def test_emit_without_subscribers_is_harmless(redis_client):
    QueueFanout(redis_client).emit("loc-2", {"type": "joined"})
    assert updates_channel("loc-2") == "queue:loc-2:updates"
