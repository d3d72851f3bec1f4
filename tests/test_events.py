from __future__ import annotations

import threading

from qa_flows.runner.engine.events import EventChannel, RunEvent


def test_publish_without_subscribers_is_a_noop() -> None:
    channel = EventChannel()

    event = channel.publish("start", {"flowId": "a"})

    assert event.type == "start"
    assert channel.subscriber_count == 0


def test_every_subscriber_gets_events_in_order() -> None:
    channel = EventChannel()
    first = channel.subscribe()
    second = channel.subscribe()

    channel.publish("start")
    channel.publish("step_start", {"stepNumber": 1})
    channel.publish("complete")

    assert [e.type for e in first.drain()] == ["start", "step_start", "complete"]
    assert [e.type for e in second.drain()] == ["start", "step_start", "complete"]


def test_slow_subscriber_loses_oldest_events_without_blocking() -> None:
    channel = EventChannel(maxsize=2)
    sub = channel.subscribe()

    for n in range(5):
        channel.publish("step_start", {"stepNumber": n})

    assert [e.data["stepNumber"] for e in sub.drain()] == [3, 4]
    assert sub.dropped == 3


def test_closed_subscription_stops_receiving() -> None:
    channel = EventChannel()
    sub = channel.subscribe()
    sub.close()

    channel.publish("start")

    assert sub.get(timeout=0.01) is None
    assert channel.subscriber_count == 0


def test_callback_failures_do_not_reach_the_publisher() -> None:
    channel = EventChannel()
    seen: list[RunEvent] = []
    done = threading.Event()

    def _listener(event: RunEvent) -> None:
        if event.type == "step_error":
            raise RuntimeError("listener bug")
        seen.append(event)
        if event.type == "complete":
            done.set()

    channel.subscribe_callback(_listener)
    channel.publish("start")
    channel.publish("step_error", {"error": "x"})
    channel.publish("complete")

    assert done.wait(2.0)
    channel.close()
    assert [e.type for e in seen] == ["start", "complete"]


def test_closing_a_callback_subscription_stops_its_pump() -> None:
    channel = EventChannel()
    seen: list[str] = []
    sub = channel.subscribe_callback(lambda event: seen.append(event.type))
    pump = channel._pumps[0]

    sub.close()
    channel.publish("start")

    assert not pump.alive
    assert channel._pumps == []
    assert channel.subscriber_count == 0
    assert seen == []


def test_listener_may_close_its_own_subscription() -> None:
    channel = EventChannel()
    done = threading.Event()
    holder: dict[str, object] = {}

    def _listener(event: RunEvent) -> None:
        holder["sub"].close()  # type: ignore[attr-defined]
        done.set()

    holder["sub"] = channel.subscribe_callback(_listener)
    channel.publish("start")

    assert done.wait(2.0)
    assert channel.subscriber_count == 0
    channel.close()


def test_event_serialization() -> None:
    event = RunEvent(type="early_stop", data={"reason": "r"})

    assert event.to_dict()["data"] == {"reason": "r"}
    assert event.to_dict()["type"] == "early_stop"
