import logging
import sys
import structlog
from pythonjsonlogger import jsonlogger


def setup_logging(level: str = "INFO", json_logs: bool = False):
    """Structured logging setup shared by the API and the background jobs"""

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Plain stdlib loggers (routers, adapters, third-party libs)
    if json_logs:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s"
        )
    else:
        formatter = logging.Formatter("%(levelname)-8s %(name)s: %(message)s")

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_carebook", False):
            root.removeHandler(handler)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._carebook = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    return structlog.get_logger()
