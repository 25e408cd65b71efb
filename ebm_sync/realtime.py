from __future__ import annotations

import asyncio
import http.client
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Protocol
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from ebm_sync.config import settings

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = 'notification'
RELAY_PATH = '/internal/realtime/emit'
RELAY_TOKEN_HEADER = 'X-Relay-Token'


class RealtimeChannel(Protocol):
    def emit(self, room: str, event: str, payload: dict) -> int: ...


@dataclass(frozen=True)
class _Subscriber:
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop


class NotificationHub:
    """Per-user fan-out of realtime events to open websocket connections.

    ``emit`` is safe to call from worker threads; each subscriber's queue is fed
    on the event loop that created it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[_Subscriber]] = defaultdict(list)

    def subscribe(self, room: str) -> asyncio.Queue:
        subscriber = _Subscriber(queue=asyncio.Queue(), loop=asyncio.get_running_loop())
        with self._lock:
            self._subscribers[room].append(subscriber)
        return subscriber.queue

    def unsubscribe(self, room: str, queue: asyncio.Queue) -> None:
        with self._lock:
            remaining = [sub for sub in self._subscribers.get(room, []) if sub.queue is not queue]
            if remaining:
                self._subscribers[room] = remaining
            else:
                self._subscribers.pop(room, None)

    def subscriber_count(self, room: str) -> int:
        with self._lock:
            return len(self._subscribers.get(room, []))

    def emit(self, room: str, event: str, payload: dict) -> int:
        message = {'event': event, 'data': payload}
        with self._lock:
            subscribers = list(self._subscribers.get(room, []))

        delivered = 0
        for subscriber in subscribers:
            try:
                subscriber.loop.call_soon_threadsafe(subscriber.queue.put_nowait, message)
            except RuntimeError:
                logger.debug('Dropping closed realtime subscriber for %s', room)
                self.unsubscribe(room, subscriber.queue)
                continue
            delivered += 1
        return delivered


@dataclass
class HttpRelayChannel:
    """Hands events to the web process that owns the websocket hub.

    Used by out-of-process jobs (the notice cron) which cannot reach the
    in-memory ``NotificationHub`` directly. Raises ``RuntimeError`` when the
    relay cannot be reached or refuses the event.
    """

    base_url: str
    token: str
    timeout_seconds: int = 10

    @classmethod
    def from_settings(cls) -> HttpRelayChannel | None:
        if not settings.realtime_relay_url or not settings.realtime_relay_token:
            return None
        return cls(
            base_url=settings.realtime_relay_url.rstrip('/'),
            token=settings.realtime_relay_token,
            timeout_seconds=settings.realtime_relay_timeout_seconds,
        )

    def emit(self, room: str, event: str, payload: dict) -> int:
        req = Request(
            url=f'{self.base_url}{RELAY_PATH}',
            data=json.dumps({'room': room, 'event': event, 'payload': payload}).encode('utf-8'),
            headers={'Content-Type': 'application/json', RELAY_TOKEN_HEADER: self.token},
            method='POST',
        )
        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                body = json.loads(response.read().decode('utf-8'))
        except HTTPError as exc:
            raise RuntimeError(f'Realtime relay error {exc.code}: {exc.reason}') from exc
        except (OSError, http.client.HTTPException, ValueError) as exc:
            raise RuntimeError(f'Realtime relay unreachable: {exc}') from exc
        if not isinstance(body, dict):
            return 0
        return int(body.get('delivered') or 0)
