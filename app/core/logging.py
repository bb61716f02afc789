import logging
import sys
from pythonjsonlogger import jsonlogger
from app.core.config import Settings
from app.core.middleware import RequestIdLogFilter


def configure_logging(settings: Settings) -> None:
    """
    Structured logging (JSON lines on stdout).
    Settlement events are logged by the services with shipment/bid/stage
    context; every line carries the request_id of the request that caused it.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)

    # clear handlers if reloaded
    root.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    fmt = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
    )
    handler.setFormatter(fmt)
    handler.addFilter(RequestIdLogFilter())
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(max(level, logging.WARNING))
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
