from __future__ import annotations

import logging

from chatdesk.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d - %(message)s"
_configured = False


def configure_logging() -> None:
    # Configure the root logger once per process; app factories may run repeatedly in tests.
    global _configured
    level = get_settings().log_level.upper()
    if _configured:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # SQL echo is controlled separately; keep engine chatter out of app logs.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
