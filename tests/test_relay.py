import asyncio
import json

from Relay import BroadcastRelay


class Recorder:
    def __init__(self, fail=False, delay=0.0):
        self.messages = []
        self.fail = fail
        self.delay = delay

    async def send(self, text):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("socket gone")
        self.messages.append(json.loads(text))


async def _drain():
    for _ in range(20):
        await asyncio.sleep(0)


def test_every_open_subscriber_receives_broadcast():
    async def scenario():
        relay = BroadcastRelay()
        viewers = [Recorder() for _ in range(3)]
        for v in viewers:
            relay.subscribe(v.send)
        delivered = relay.broadcast({"type": "info", "message": "hello"})
        await _drain()
        relay.close()
        return delivered, viewers

    delivered, viewers = asyncio.run(scenario())
    assert delivered == 3
    for v in viewers:
        assert v.messages == [{"type": "info", "message": "hello"}]


def test_broadcast_with_no_subscribers():
    async def scenario():
        return BroadcastRelay().broadcast({"type": "info", "message": "nobody"})

    assert asyncio.run(scenario()) == 0


def test_closed_subscriber_gets_nothing_and_is_pruned():
    async def scenario():
        relay = BroadcastRelay()
        gone, stays = Recorder(), Recorder()
        handle = relay.subscribe(gone.send)
        relay.subscribe(stays.send)
        relay.unsubscribe(handle)
        delivered = relay.broadcast({"type": "info", "message": "x"})
        await _drain()
        count = len(relay)
        relay.close()
        return delivered, count, gone, stays

    delivered, count, gone, stays = asyncio.run(scenario())
    assert delivered == 1
    assert count == 1
    assert gone.messages == []
    assert len(stays.messages) == 1


def test_order_is_preserved_per_subscriber():
    async def scenario():
        relay = BroadcastRelay()
        slow, fast = Recorder(delay=0.001), Recorder()
        relay.subscribe(slow.send)
        relay.subscribe(fast.send)
        for i in range(10):
            relay.broadcast({"type": "info", "message": str(i)})
        await asyncio.sleep(0.1)
        relay.close()
        return slow, fast

    slow, fast = asyncio.run(scenario())
    expected = [str(i) for i in range(10)]
    assert [m["message"] for m in slow.messages] == expected
    assert [m["message"] for m in fast.messages] == expected


def test_failing_subscriber_is_dropped_without_affecting_others():
    async def scenario():
        relay = BroadcastRelay()
        broken, healthy = Recorder(fail=True), Recorder()
        bad = relay.subscribe(broken.send)
        relay.subscribe(healthy.send)
        relay.broadcast({"type": "info", "message": "1"})
        await _drain()
        second = relay.broadcast({"type": "info", "message": "2"})
        await _drain()
        count = len(relay)
        relay.close()
        return bad, second, count, healthy

    bad, second, count, healthy = asyncio.run(scenario())
    assert bad.closed
    assert second == 1
    assert count == 1
    assert [m["message"] for m in healthy.messages] == ["1", "2"]


def test_malformed_message_answers_sender_only():
    async def scenario():
        relay = BroadcastRelay()
        sender, other = Recorder(), Recorder()
        handle = relay.subscribe(sender.send)
        relay.subscribe(other.send)
        relay.handle_client_message(handle, "{not json")
        await _drain()
        relay.close()
        return sender, other

    sender, other = asyncio.run(scenario())
    assert sender.messages == [{"type": "error", "message": "Invalid message format"}]
    assert other.messages == []


def test_control_message_broadcasts_irrigation_state():
    async def scenario():
        relay = BroadcastRelay()
        sender, other = Recorder(), Recorder()
        handle = relay.subscribe(sender.send)
        relay.subscribe(other.send)
        relay.handle_client_message(
            handle, json.dumps({"type": "control", "action": "toggle_irrigation", "payload": {"status": True}})
        )
        relay.handle_client_message(handle, json.dumps({"type": "ping"}))
        await _drain()
        relay.close()
        return relay, sender, other

    relay, sender, other = asyncio.run(scenario())
    assert relay.irrigation is True
    assert sender.messages == [{"type": "irrigation_state", "status": True}]
    assert other.messages == [{"type": "irrigation_state", "status": True}]
