from __future__ import annotations

import logging
import sys

from appforge.core.config import get_settings


_HANDLER_NAME = "appforge"
_LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"


def configure_logging() -> None:
    # Install a single stream handler so repeated create_app() calls do not duplicate output.
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    # Keep third-party HTTP client chatter out of request logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
