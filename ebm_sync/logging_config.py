from __future__ import annotations

import logging

from ebm_sync.config import settings

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def configure_logging(level: str | None = None) -> None:
    resolved = (level or settings.log_level).strip().upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)
    logging.getLogger('ebm_sync').setLevel(resolved)
