"""
Lifecycle events for flow runs.

`EventChannel.publish()` never blocks and never raises: each subscriber owns a
bounded queue, and a slow subscriber loses its oldest events instead of slowing
the run down. Publishing with no subscribers is a no-op.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .types import now_iso

logger = logging.getLogger("qa_flows.runner.events")

EVENT_TYPES = ("start", "step_start", "step_complete", "step_error", "early_stop", "complete", "error")

DEFAULT_MAXSIZE = 256


@dataclass(frozen=True, slots=True)
class RunEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "timestamp": self.timestamp, "data": self.data}


class Subscription:
    """One subscriber's view of the channel."""

    def __init__(self, channel: EventChannel, maxsize: int) -> None:
        self._channel = channel
        self._queue: queue.Queue[RunEvent] = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def _offer(self, event: RunEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> RunEvent | None:
        """Next event, or None when `timeout` elapses."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[RunEvent]:
        out: list[RunEvent] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except queue.Empty:
                return out

    def close(self) -> None:
        self.closed = True
        self._channel.unsubscribe(self)


class _CallbackPump:
    def __init__(self, subscription: Subscription, callback: Callable[[RunEvent], None], name: str) -> None:
        self.subscription = subscription
        self._callback = callback
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        if not self._thread.is_alive():
            self._thread.start()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        # A listener may close its own subscription from the pump thread.
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)

    def _run(self) -> None:
        while not self._stop.is_set() or not self.subscription._queue.empty():
            event = self.subscription.get(timeout=0.2)
            if event is None:
                continue
            try:
                self._callback(event)
            except Exception:
                # Listener failures never reach the run.
                logger.exception("event listener failed on %s", event.type)


class EventChannel:
    def __init__(self, maxsize: int = DEFAULT_MAXSIZE) -> None:
        self.maxsize = max(1, int(maxsize))
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []
        self._pumps: list[_CallbackPump] = []

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.maxsize)
        with self._lock:
            self._subscribers.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscribers:
                self._subscribers.remove(subscription)
            pumps = [p for p in self._pumps if p.subscription is subscription]
            self._pumps = [p for p in self._pumps if p.subscription is not subscription]
        for pump in pumps:
            pump.stop()

    def subscribe_callback(self, callback: Callable[[RunEvent], None]) -> Subscription:
        """Deliver events to `callback` from a daemon thread."""
        sub = self.subscribe()
        pump = _CallbackPump(sub, callback, name=f"qa-flows-events-{len(self._pumps)}")
        with self._lock:
            self._pumps.append(pump)
        pump.start()
        return sub

    def publish(self, event_type: str, data: dict[str, Any] | None = None) -> RunEvent:
        event = RunEvent(type=event_type, data=dict(data or {}))
        with self._lock:
            subscribers = list(self._subscribers)
        for sub in subscribers:
            sub._offer(event)
        return event

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self, timeout: float = 1.0) -> None:
        """Flush callback subscribers and detach everyone."""
        with self._lock:
            pumps = list(self._pumps)
            self._pumps.clear()
        for pump in pumps:
            pump.stop(timeout=timeout)
        with self._lock:
            self._subscribers.clear()


__all__ = ["DEFAULT_MAXSIZE", "EVENT_TYPES", "EventChannel", "RunEvent", "Subscription"]
