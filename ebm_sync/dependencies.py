from fastapi.requests import HTTPConnection

from ebm_sync.realtime import NotificationHub
from ebm_sync.services.ebm_code_sync_service import EbmCodeSyncService
from ebm_sync.services.ebm_gateway import EbmGateway
from ebm_sync.services.ebm_notice_service import EbmNoticeService


def get_gateway(connection: HTTPConnection) -> EbmGateway:
    return connection.app.state.ebm_gateway


def get_notification_hub(connection: HTTPConnection) -> NotificationHub | None:
    return getattr(connection.app.state, 'notification_hub', None)


def get_code_sync_service(connection: HTTPConnection) -> EbmCodeSyncService:
    return EbmCodeSyncService(get_gateway(connection))


def get_notice_service(connection: HTTPConnection) -> EbmNoticeService:
    return EbmNoticeService(get_gateway(connection), get_notification_hub(connection))
