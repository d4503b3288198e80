"""Upload progress events and the dispatchers that route them to subscribers."""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any

import redis

_log = logging.getLogger(__name__)

CHANNEL_PREFIX = "upload:"
CHANNEL_PATTERN = "upload:*"
SUBSCRIBER_BUFFER = 64


def _number(value: float) -> int | float:
    value = float(value)
    return int(value) if value.is_integer() else value


@dataclass
class ProgressEvent:
    """Progress of one upload."""

    filename: str = ""
    transferred: int = 0
    total: int = 0
    percentage: float = 0.0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form; empty filename, total and message are left out."""
        out: dict[str, Any] = {}
        if self.filename:
            out["filename"] = self.filename
        out["bytes"] = self.transferred
        if self.total:
            out["total_bytes"] = self.total
        out["percentage"] = _number(self.percentage)
        if self.message:
            out["message"] = self.message
        return out

    def to_json(self) -> str:
        """Return the event as compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


def event_from_json(data: str | bytes) -> ProgressEvent:
    """Parse an event from its JSON form; raise ValueError if it is not one."""
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    obj = json.loads(data)
    if not isinstance(obj, dict):
        raise ValueError("progress event must be a JSON object")
    try:
        return ProgressEvent(
            filename=str(obj.get("filename", "")),
            transferred=int(obj.get("bytes", 0)),
            total=int(obj.get("total_bytes", 0)),
            percentage=float(obj.get("percentage", 0)),
            message=str(obj.get("message", "")),
        )
    except (TypeError, ValueError) as exc:
        raise ValueError(f"malformed progress event: {exc}") from exc


class Subscriber:
    """One listener for the events of an upload.

    Events are buffered up to a small limit; while the buffer is full new
    events are dropped rather than blocking the sender.
    """

    def __init__(self) -> None:
        self._events: deque[ProgressEvent] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: ProgressEvent) -> bool:
        """Queue an event without waiting; return whether it was accepted."""
        with self._cond:
            if self._closed or len(self._events) >= SUBSCRIBER_BUFFER:
                return False
            self._events.append(event)
            self._cond.notify()
            return True

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Return the next event, or None on timeout or once closed and drained."""
        with self._cond:
            self._cond.wait_for(lambda: self._events or self._closed, timeout)
            if self._events:
                return self._events.popleft()
            return None

    def close(self) -> None:
        """Stop accepting events and wake any waiting reader."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class Dispatcher(ABC):
    """Routes progress events to the subscriber registered for an upload."""

    @abstractmethod
    def add_subscriber(self, upload_id: str, subscriber: Subscriber) -> None:
        """Register ``subscriber`` for ``upload_id``."""

    @abstractmethod
    def del_subscriber(self, upload_id: str) -> None:
        """Forget the subscriber for ``upload_id``."""

    @abstractmethod
    def send_event(self, upload_id: str, event: ProgressEvent) -> None:
        """Deliver ``event`` to the subscriber for ``upload_id``, if any."""


class MemDispatcher(Dispatcher):
    """In-process dispatcher."""

    def __init__(self) -> None:
        self._subs: dict[str, Subscriber] = {}
        self._lock = threading.Lock()

    def add_subscriber(self, upload_id: str, subscriber: Subscriber) -> None:
        with self._lock:
            self._subs[upload_id] = subscriber

    def del_subscriber(self, upload_id: str) -> None:
        with self._lock:
            self._subs.pop(upload_id, None)

    def send_event(self, upload_id: str, event: ProgressEvent) -> None:
        with self._lock:
            subscriber = self._subs.get(upload_id)
            if subscriber is not None:
                subscriber.offer(event)


def _connect(addr: str) -> redis.Redis:
    host, _, port = addr.rpartition(":")
    if not host:
        host, port = port, ""
    return redis.Redis(host=host or "localhost", port=int(port) if port else 6379)


class RedisDispatcher(Dispatcher):
    """Dispatcher that publishes events through Redis so any server instance can deliver them."""

    def __init__(self, addr: str, client: Any = None) -> None:
        self._subs: dict[str, Subscriber] = {}
        self._lock = threading.Lock()
        self._client = client if client is not None else _connect(addr)
        self._stopping = threading.Event()
        self._pubsub: Any = None
        self._thread = threading.Thread(target=self._run, name="redis-dispatcher", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        try:
            self.listen()
        except Exception:
            if not self._stopping.is_set():
                _log.exception("redis listener stopped")

    def add_subscriber(self, upload_id: str, subscriber: Subscriber) -> None:
        with self._lock:
            self._subs[upload_id] = subscriber

    def del_subscriber(self, upload_id: str) -> None:
        with self._lock:
            self._subs.pop(upload_id, None)

    def send_event(self, upload_id: str, event: ProgressEvent) -> None:
        try:
            self._client.publish(CHANNEL_PREFIX + upload_id, event.to_json())
        except redis.RedisError as exc:
            _log.warning("could not publish progress event: %s", exc)

    def deliver(self, channel: str | bytes, payload: str | bytes) -> None:
        """Hand one published message to the local subscriber it is meant for."""
        if isinstance(channel, (bytes, bytearray)):
            channel = channel.decode("utf-8")
        parts = channel.split(":")
        upload_id = parts[1] if len(parts) > 1 else ""
        try:
            event = event_from_json(payload)
        except ValueError:
            event = ProgressEvent()
        with self._lock:
            subscriber = self._subs.get(upload_id)
        if subscriber is not None:
            subscriber.offer(event)

    def listen(self) -> None:
        """Subscribe to all upload channels and deliver messages until stopped."""
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        self._pubsub = pubsub
        pubsub.psubscribe(CHANNEL_PATTERN)
        for message in pubsub.listen():
            if self._stopping.is_set():
                break
            if not message or message.get("type") != "pmessage":
                continue
            self.deliver(message["channel"], message["data"])

    def close(self) -> None:
        """Stop listening and wait briefly for the listener to finish."""
        self._stopping.set()
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except Exception:
                _log.debug("error closing pubsub", exc_info=True)
        self._thread.join(timeout=1)