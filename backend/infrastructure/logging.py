import logging
import sys
import structlog
from loguru import logger
from infrastructure.config import settings

def configure_logging():
    """
    Configures logging for the hash sync workers.
    structlog renders stdlib records (Celery, SQLAlchemy): JSON in production,
    colored console output otherwise. Application code logs through loguru,
    whose sink follows the same switch.
    """
    production = settings.ENVIRONMENT == "production"

    # Shared processors for both structlog and standard logging
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        # These run ONLY on `logging` calls
        foreign_pre_chain=shared_processors,
        # These run on EVERYTHING
        processors=[
             structlog.stdlib.ProcessorFormatter.remove_processors_meta,
             structlog.processors.JSONRenderer() if production else structlog.dev.ConsoleRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(logging.INFO)

    # SQLAlchemy echoes every statement at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logger.remove()
    logger.add(sys.stdout, level="DEBUG" if not production else "INFO", serialize=production)

    log = structlog.get_logger()
    log.info("Logging configured", env=settings.ENVIRONMENT)
