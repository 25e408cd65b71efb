import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from ebm_sync.config import settings
from ebm_sync.logging_config import configure_logging
from ebm_sync.realtime import NotificationHub
from ebm_sync.routers import ebm, notifications
from ebm_sync.services.ebm_gateway import EbmGateway

configure_logging()

app = FastAPI(title='EBM Fiscal Sync')

app.state.ebm_gateway = EbmGateway.from_settings()
app.state.notification_hub = NotificationHub()

app.include_router(ebm.router)
app.include_router(notifications.router)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok\n'


def serve() -> None:
    uvicorn.run('ebm_sync.main:app', host=settings.app_host, port=settings.app_port, log_config=None)


if __name__ == '__main__':
    serve()
