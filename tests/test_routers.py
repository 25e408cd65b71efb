from __future__ import annotations

import time
import unittest
from types import SimpleNamespace
from unittest.mock import Mock, patch

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from ebm_sync.auth import Principal, Role, get_current_principal, get_websocket_principal
from ebm_sync.db import get_db
from ebm_sync.dependencies import get_code_sync_service, get_notice_service
from ebm_sync.errors import EbmConfigurationError, EbmProtocolError
from ebm_sync.main import app, serve
from ebm_sync.services.ebm_code_sync_service import CodeSyncResult
from ebm_sync.services.ebm_notice_service import DeliveryOutcome, NoticeSyncResult
from ebm_sync.services.notification_service import create_notification

from db_support import make_session_factory, seed_company, seed_user


class RouterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.Session = make_session_factory()
        with self.Session() as db:
            company = seed_company(db)
            user = seed_user(db, company, first_name='Aline')
            other = seed_user(db, company, first_name='Jean')
            db.commit()
            self.company_id, self.user_id, self.other_user_id = company.id, user.id, other.id

        def _override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        self.principal = Principal(id=self.user_id, role=Role.USER, company_id=self.company_id)
        app.dependency_overrides[get_db] = _override_db
        app.dependency_overrides[get_current_principal] = lambda: self.principal
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def _seed_notification(self, user_id: str, title: str) -> str:
        with self.Session() as db:
            notification = create_notification(db, user_id=user_id, title=title, message='body', company_id=self.company_id)
            db.commit()
            return notification.id


class NotificationRouterTests(RouterTestCase):
    def test_requires_principal(self) -> None:
        del app.dependency_overrides[get_current_principal]
        response = self.client.get('/notifications')
        self.assertEqual(response.status_code, 401)

    def test_list_and_unread_count(self) -> None:
        self._seed_notification(self.user_id, 'First')
        self._seed_notification(self.user_id, 'Second')
        self._seed_notification(self.other_user_id, 'Not mine')

        listing = self.client.get('/notifications', params={'limit': 10})
        self.assertEqual(listing.status_code, 200)
        titles = sorted(row['title'] for row in listing.json()['data'])
        self.assertEqual(titles, ['First', 'Second'])
        self.assertEqual(listing.json()['data'][0]['userId'], self.user_id)

        count = self.client.get('/notifications/unread-count')
        self.assertEqual(count.json()['count'], 2)

    def test_mark_read_and_read_all(self) -> None:
        first = self._seed_notification(self.user_id, 'First')
        self._seed_notification(self.user_id, 'Second')

        self.assertEqual(self.client.post(f'/notifications/{first}/read').status_code, 200)
        self.assertEqual(self.client.get('/notifications/unread-count').json()['count'], 1)

        read_all = self.client.post('/notifications/read-all')
        self.assertEqual(read_all.json()['updated'], 1)
        self.assertEqual(self.client.get('/notifications/unread-count').json()['count'], 0)

    def test_other_users_notifications_are_not_found(self) -> None:
        foreign = self._seed_notification(self.other_user_id, 'Not mine')

        self.assertEqual(self.client.post(f'/notifications/{foreign}/read').status_code, 404)
        self.assertEqual(self.client.delete(f'/notifications/{foreign}').status_code, 404)

    def test_delete(self) -> None:
        mine = self._seed_notification(self.user_id, 'First')

        self.assertEqual(self.client.delete(f'/notifications/{mine}').status_code, 200)
        self.assertEqual(self.client.get('/notifications').json()['data'], [])


class NotificationSocketTests(RouterTestCase):
    def test_unauthenticated_socket_is_closed(self) -> None:
        app.dependency_overrides[get_websocket_principal] = lambda: None

        with self.assertRaises(WebSocketDisconnect):
            with self.client.websocket_connect('/ws/notifications') as websocket:
                websocket.receive_json()

    def test_emitted_notification_is_pushed(self) -> None:
        app.dependency_overrides[get_websocket_principal] = lambda: self.principal
        hub = app.state.notification_hub

        with self.client.websocket_connect('/ws/notifications') as websocket:
            deadline = time.monotonic() + 2
            while hub.subscriber_count(self.user_id) == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            delivered = hub.emit(self.user_id, 'notification', {'id': 'n-1', 'title': 'VAT filing reminder'})
            message = websocket.receive_json()

        self.assertEqual(delivered, 1)
        self.assertEqual(message, {'event': 'notification', 'data': {'id': 'n-1', 'title': 'VAT filing reminder'}})

class RealtimeRelayRouterTests(RouterTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = patch('ebm_sync.routers.notifications.settings', SimpleNamespace(realtime_relay_token='relay-secret'))
        patcher.start()
        self.addCleanup(patcher.stop)

    def _relay(self, token: str | None):
        headers = {'X-Relay-Token': token} if token is not None else {}
        return self.client.post(
            '/internal/realtime/emit',
            json={'room': self.user_id, 'event': 'notification', 'payload': {'id': 'n-1', 'title': 'System upgrade'}},
            headers=headers,
        )

    def test_relay_rejects_missing_or_wrong_token(self) -> None:
        self.assertEqual(self._relay(None).status_code, 403)
        self.assertEqual(self._relay('guess').status_code, 403)

    def test_relay_is_closed_when_no_token_is_configured(self) -> None:
        with patch('ebm_sync.routers.notifications.settings', SimpleNamespace(realtime_relay_token=None)):
            self.assertEqual(self._relay('relay-secret').status_code, 403)

    def test_relayed_event_reaches_open_socket(self) -> None:
        app.dependency_overrides[get_websocket_principal] = lambda: self.principal
        hub = app.state.notification_hub

        with self.client.websocket_connect('/ws/notifications') as websocket:
            deadline = time.monotonic() + 2
            while hub.subscriber_count(self.user_id) == 0 and time.monotonic() < deadline:
                time.sleep(0.01)

            response = self._relay('relay-secret')
            message = websocket.receive_json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'success': True, 'delivered': 1})
        self.assertEqual(message, {'event': 'notification', 'data': {'id': 'n-1', 'title': 'System upgrade'}})



class EbmRouterTests(RouterTestCase):
    def _notice_service(self) -> Mock:
        service = Mock()
        service.sync_notices.return_value = NoticeSyncResult(
            company_id=self.company_id,
            watermark='20260130120000',
            fetched=1,
            processed=['101'],
            deliveries=[DeliveryOutcome(user_id=self.user_id, notice_no='101', delivered=True, notification_id='n-1')],
        )
        app.dependency_overrides[get_notice_service] = lambda: service
        return service

    def test_notice_sync_requires_admin(self) -> None:
        self._notice_service()
        response = self.client.post('/ebm/notices/sync', json={'company_id': self.company_id})
        self.assertEqual(response.status_code, 403)

    def test_company_admin_cannot_sync_other_company(self) -> None:
        self._notice_service()
        self.principal = Principal(id=self.user_id, role=Role.COMPANY_ADMIN, company_id=self.company_id)

        response = self.client.post('/ebm/notices/sync', json={'company_id': 'another-company'})

        self.assertEqual(response.status_code, 403)

    def test_admin_notice_sync(self) -> None:
        service = self._notice_service()
        self.principal = Principal(id=self.user_id, role=Role.ADMIN, company_id=None)

        response = self.client.post('/ebm/notices/sync', json={'company_id': self.company_id})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['result']['processed'], ['101'])
        self.assertEqual(body['result']['deliveries'][0]['delivered'], True)
        service.sync_notices.assert_called_once()
        self.assertEqual(service.sync_notices.call_args.args[1], self.company_id)

    def test_refresh_uses_callers_company(self) -> None:
        service = self._notice_service()

        response = self.client.get('/ebm/notices/refresh')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(service.sync_notices.call_args.args[1], self.company_id)

    def test_refresh_without_company(self) -> None:
        self._notice_service()
        self.principal = Principal(id=self.user_id, role=Role.USER, company_id=None)

        response = self.client.get('/ebm/notices/refresh')

        self.assertEqual(response.status_code, 400)

    def test_code_status_defaults_to_unsynced(self) -> None:
        response = self.client.get('/ebm/codes/status')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'companyId': self.company_id, 'status': 'UNSYNCED'})

    def test_unknown_code_class(self) -> None:
        response = self.client.get('/ebm/codes/99')
        self.assertEqual(response.status_code, 404)

    def test_required_codes_empty_catalog(self) -> None:
        response = self.client.get('/ebm/codes')
        self.assertEqual(response.json(), {'success': True, 'data': []})

    def test_force_sync_error_mapping(self) -> None:
        self.principal = Principal(id=self.user_id, role=Role.COMPANY_ADMIN, company_id=self.company_id)
        service = Mock()
        app.dependency_overrides[get_code_sync_service] = lambda: service

        service.force_sync.side_effect = EbmProtocolError('EBM API response missing clsList array')
        self.assertEqual(self.client.post('/ebm/codes/sync').status_code, 502)

        service.force_sync.side_effect = EbmConfigurationError('Company TIN not configured')
        self.assertEqual(self.client.post('/ebm/codes/sync').status_code, 400)

        service.force_sync.side_effect = ValueError('Company not found')
        self.assertEqual(self.client.post('/ebm/codes/sync').status_code, 404)

        service.force_sync.side_effect = None
        service.force_sync.return_value = CodeSyncResult(company_id=self.company_id, class_count=4, total_codes=120)
        response = self.client.post('/ebm/codes/sync')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['totalCodes'], 120)

class ServeTests(unittest.TestCase):
    @patch('ebm_sync.main.uvicorn.run')
    def test_serve_runs_the_app_on_configured_address(self, run_mock) -> None:
        with patch('ebm_sync.main.settings', SimpleNamespace(app_host='127.0.0.1', app_port=9100)):
            serve()

        run_mock.assert_called_once_with('ebm_sync.main:app', host='127.0.0.1', port=9100, log_config=None)

    def test_healthz(self) -> None:
        response = TestClient(app).get('/healthz')
        self.assertEqual(response.text, 'ok\n')



if __name__ == '__main__':
    unittest.main()
