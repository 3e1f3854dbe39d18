"""Session id propagation into log records."""
from __future__ import annotations

import logging
from contextvars import ContextVar

session_id_ctx: ContextVar[str] = ContextVar("session_id", default="-")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(session_id)s]: %(message)s"


class SessionIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = session_id_ctx.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        handler.addFilter(SessionIdFilter())
