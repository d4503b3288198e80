import threading

import pytest

from filedrop.events import (
    MemDispatcher,
    ProgressEvent,
    RedisDispatcher,
    Subscriber,
    event_from_json,
)


class FakePubSub:
    def __init__(self, messages):
        self.messages = list(messages)
        self.patterns = []
        self.closed = False

    def psubscribe(self, *patterns):
        self.patterns.extend(patterns)

    def listen(self):
        yield from self.messages

    def close(self):
        self.closed = True


class FakeRedis:
    def __init__(self, messages=()):
        self.messages = messages
        self.published = []
        self.pubsubs = []

    def pubsub(self, **kwargs):
        ps = FakePubSub(self.messages)
        self.pubsubs.append(ps)
        return ps

    def publish(self, channel, data):
        self.published.append((channel, data))
        return 0


def test_to_dict_leaves_out_empty_fields():
    assert ProgressEvent(transferred=5).to_dict() == {"bytes": 5, "percentage": 0}


def test_to_dict_full_keys():
    ev = ProgressEvent("a.zip", 10, 20, 50.5, "Uploading")
    assert ev.to_dict() == {
        "filename": "a.zip",
        "bytes": 10,
        "total_bytes": 20,
        "percentage": 50.5,
        "message": "Uploading",
    }


def test_whole_percentage_is_written_as_integer():
    ev = ProgressEvent("a.zip", 7, 7, 100, "Upload complete")
    assert '"percentage":100,' in ev.to_json()


@pytest.mark.parametrize(
    "event",
    [ProgressEvent(), ProgressEvent("f.zip", 3, 9, 33.5, "Uploading"), ProgressEvent(transferred=1)],
)
def test_json_round_trip(event):
    assert event_from_json(event.to_json()) == event
    assert event_from_json(event.to_json().encode()) == event


@pytest.mark.parametrize("data", ["not json", "[1, 2]", '{"bytes": "many"}'])
def test_event_from_json_rejects_bad_input(data):
    with pytest.raises(ValueError):
        event_from_json(data)


def test_subscriber_delivers_in_order_and_drops_when_full():
    sub = Subscriber()
    accepted = sum(sub.offer(ProgressEvent(transferred=i)) for i in range(1000))
    assert 0 < accepted < 1000
    drained = [sub.get(timeout=0).transferred for _ in range(accepted)]
    assert drained == list(range(accepted))
    assert sub.get(timeout=0) is None


def test_subscriber_close_refuses_events_and_wakes_reader():
    sub = Subscriber()
    results = []
    reader = threading.Thread(target=lambda: results.append(sub.get(timeout=5)))
    reader.start()
    sub.close()
    reader.join(timeout=5)
    assert results == [None]
    assert sub.closed
    assert sub.offer(ProgressEvent()) is False


def test_subscriber_get_waits_for_event():
    sub = Subscriber()
    ev = ProgressEvent("x", 1)
    timer = threading.Timer(0.05, sub.offer, args=(ev,))
    timer.start()
    assert sub.get(timeout=5) == ev


def test_mem_dispatcher_routes_by_id():
    dispatcher = MemDispatcher()
    a, b = Subscriber(), Subscriber()
    dispatcher.add_subscriber("a", a)
    dispatcher.add_subscriber("b", b)
    ev = ProgressEvent("file", 4)
    dispatcher.send_event("a", ev)
    assert a.get(timeout=0) == ev
    assert b.get(timeout=0) is None


def test_mem_dispatcher_forgets_deleted_subscriber():
    dispatcher = MemDispatcher()
    sub = Subscriber()
    dispatcher.add_subscriber("a", sub)
    dispatcher.del_subscriber("a")
    dispatcher.send_event("a", ProgressEvent())
    dispatcher.del_subscriber("missing")
    assert sub.get(timeout=0) is None


def test_redis_send_event_publishes_on_upload_channel():
    fake = FakeRedis()
    dispatcher = RedisDispatcher("", client=fake)
    ev = ProgressEvent("f.zip", 2, 4, 50, "Uploading")
    dispatcher.send_event("abc", ev)
    dispatcher.close()
    channel, data = fake.published[0]
    assert channel == "upload:abc"
    assert event_from_json(data) == ev


def test_redis_listener_subscribes_to_pattern_and_closes():
    fake = FakeRedis()
    dispatcher = RedisDispatcher("localhost:6379", client=fake)
    dispatcher.close()
    assert fake.pubsubs[0].patterns == ["upload:*"]
    assert fake.pubsubs[-1].closed


def test_redis_listen_delivers_pmessages():
    ev = ProgressEvent("f.zip", 5, 10, 50, "Uploading")
    messages = [
        {"type": "psubscribe", "pattern": None, "channel": b"upload:*", "data": 1},
        {"type": "pmessage", "pattern": b"upload:*", "channel": b"upload:u1", "data": ev.to_json().encode()},
    ]
    dispatcher = RedisDispatcher("", client=FakeRedis(messages))
    sub = Subscriber()
    dispatcher.add_subscriber("u1", sub)
    dispatcher.listen()
    dispatcher.close()
    assert sub.get(timeout=1) == ev


def test_redis_deliver_bad_payload_sends_empty_event():
    dispatcher = RedisDispatcher("", client=FakeRedis())
    sub = Subscriber()
    dispatcher.add_subscriber("x", sub)
    dispatcher.deliver("upload:x", b"not json")
    dispatcher.close()
    assert sub.get(timeout=0) == ProgressEvent()


def test_redis_deliver_ignores_unknown_and_deleted_ids():
    dispatcher = RedisDispatcher("", client=FakeRedis())
    sub = Subscriber()
    dispatcher.add_subscriber("x", sub)
    dispatcher.del_subscriber("x")
    dispatcher.deliver("upload:x", ProgressEvent(transferred=1).to_json())
    dispatcher.close()
    assert sub.get(timeout=0) is None