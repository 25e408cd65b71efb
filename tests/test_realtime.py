from __future__ import annotations

import asyncio
import io
import json
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

from ebm_sync.realtime import NOTIFICATION_EVENT, HttpRelayChannel, NotificationHub


class NotificationHubTests(unittest.IsolatedAsyncioTestCase):
    async def test_emit_reaches_only_the_users_subscribers(self) -> None:
        hub = NotificationHub()
        first = hub.subscribe('user-1')
        second = hub.subscribe('user-1')
        other = hub.subscribe('user-2')

        delivered = hub.emit('user-1', NOTIFICATION_EVENT, {'id': 'n-1'})

        self.assertEqual(delivered, 2)
        for queue in (first, second):
            message = await asyncio.wait_for(queue.get(), timeout=1)
            self.assertEqual(message, {'event': 'notification', 'data': {'id': 'n-1'}})
        self.assertTrue(other.empty())

    async def test_emit_from_worker_thread(self) -> None:
        hub = NotificationHub()
        queue = hub.subscribe('user-1')

        delivered = await asyncio.to_thread(hub.emit, 'user-1', NOTIFICATION_EVENT, {'id': 'n-2'})

        self.assertEqual(delivered, 1)
        message = await asyncio.wait_for(queue.get(), timeout=1)
        self.assertEqual(message['data'], {'id': 'n-2'})

    async def test_unsubscribe(self) -> None:
        hub = NotificationHub()
        queue = hub.subscribe('user-1')
        hub.unsubscribe('user-1', queue)

        self.assertEqual(hub.subscriber_count('user-1'), 0)
        self.assertEqual(hub.emit('user-1', NOTIFICATION_EVENT, {}), 0)


class ClosedLoopTests(unittest.TestCase):
    def test_subscribers_on_closed_loops_are_dropped(self) -> None:
        hub = NotificationHub()

        async def _subscribe() -> None:
            hub.subscribe('user-1')

        loop = asyncio.new_event_loop()
        loop.run_until_complete(_subscribe())
        loop.close()

        self.assertEqual(hub.subscriber_count('user-1'), 1)
        self.assertEqual(hub.emit('user-1', NOTIFICATION_EVENT, {'id': 'n-3'}), 0)
        self.assertEqual(hub.subscriber_count('user-1'), 0)

def _relay_response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.__enter__.return_value.read.return_value = body
    return response


class HttpRelayChannelTests(unittest.TestCase):
    def _channel(self) -> HttpRelayChannel:
        return HttpRelayChannel(base_url='http://web.internal:8000', token='relay-secret', timeout_seconds=3)

    @patch('ebm_sync.realtime.urlopen')
    def test_emit_posts_event_to_web_process(self, urlopen_mock) -> None:
        urlopen_mock.return_value = _relay_response(b'{"success": true, "delivered": 2}')

        delivered = self._channel().emit('user-1', NOTIFICATION_EVENT, {'id': 'n-1'})

        self.assertEqual(delivered, 2)
        request = urlopen_mock.call_args.args[0]
        self.assertEqual(request.full_url, 'http://web.internal:8000/internal/realtime/emit')
        self.assertEqual(request.get_method(), 'POST')
        self.assertEqual(request.get_header('X-relay-token'), 'relay-secret')
        self.assertEqual(json.loads(request.data), {'room': 'user-1', 'event': 'notification', 'payload': {'id': 'n-1'}})
        self.assertEqual(urlopen_mock.call_args.kwargs['timeout'], 3)

    @patch('ebm_sync.realtime.urlopen')
    def test_refused_or_unreachable_relay_raises(self, urlopen_mock) -> None:
        for failure in (
            HTTPError('http://web.internal:8000/internal/realtime/emit', 403, 'Forbidden', None, io.BytesIO(b'')),
            URLError('connection refused'),
        ):
            with self.subTest(failure=type(failure).__name__):
                urlopen_mock.side_effect = failure
                with self.assertRaises(RuntimeError):
                    self._channel().emit('user-1', NOTIFICATION_EVENT, {'id': 'n-1'})

    def test_from_settings_requires_url_and_token(self) -> None:
        unset = SimpleNamespace(realtime_relay_url=None, realtime_relay_token='t', realtime_relay_timeout_seconds=10)
        with patch('ebm_sync.realtime.settings', unset):
            self.assertIsNone(HttpRelayChannel.from_settings())

        configured = SimpleNamespace(
            realtime_relay_url='http://web.internal:8000/',
            realtime_relay_token='relay-secret',
            realtime_relay_timeout_seconds=4,
        )
        with patch('ebm_sync.realtime.settings', configured):
            channel = HttpRelayChannel.from_settings()

        self.assertEqual(channel, HttpRelayChannel(base_url='http://web.internal:8000', token='relay-secret', timeout_seconds=4))


if __name__ == '__main__':
    unittest.main()
