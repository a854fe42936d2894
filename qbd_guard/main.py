from __future__ import annotations

import logging
from typing import Optional

import httpx

from qbd_guard.core import logging as logging_utils
from qbd_guard.core.config import Settings, get_settings
from qbd_guard.services.conductor_client import ConductorClient


def build_client(
    settings: Optional[Settings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    configure_logs: bool = True,
) -> ConductorClient:
    """Build the client once at process start from the loaded settings."""
    settings = settings or get_settings()
    if configure_logs:
        logging_utils.configure_logging(settings.log_level.upper())
    client = ConductorClient(settings, transport=transport)
    logger = logging.getLogger("qbd_guard.startup")
    logger.info(
        "client_initialized",
        extra={
            "app_version": settings.app_version,
            "api_base_url": settings.api_base_url,
            "api_key": logging_utils.mask_secret(settings.api_key),
            "data_patterns_dir": str(settings.data_patterns_dir),
            "write_logs_dir": str(settings.write_logs_dir),
        },
    )
    return client
