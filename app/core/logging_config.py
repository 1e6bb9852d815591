import logging
import structlog
from app.core.config import settings

# Libraries whose INFO chatter drowns request logs
NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "passlib")


def configure_logging():
    """Configure structured logging.

    JSON lines everywhere except local debugging, where the console renderer
    is easier to read. Events carry the correlation id bound by the request
    middleware through ``merge_contextvars``.
    """
    if settings.DEBUG and settings.ENVIRONMENT != "production":
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level = logging.DEBUG if settings.DEBUG else logging.INFO
    logging.basicConfig(format="%(message)s", level=level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if settings.DEBUG else logging.WARNING)
