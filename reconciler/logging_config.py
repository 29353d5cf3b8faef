"""Structured JSON logging with webhook event context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter


event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
event_type_ctx: ContextVar[str] = ContextVar("event_type", default="")
account_id_ctx: ContextVar[str] = ContextVar("account_id", default="")


class ContextFilter(logging.Filter):
    """Inject the event being processed into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.event_id = event_id_ctx.get()
        record.event_type = event_type_ctx.get()
        record.account_id = account_id_ctx.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter("%(asctime)s %(levelname)s %(name)s %(event_id)s %(event_type)s %(account_id)s %(message)s")
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
