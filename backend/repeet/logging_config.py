"""
Logging for the Repeet backend.

structlog renders on top of the stdlib root logger. Every line carries the
app metadata and the review timezone, and, once a request has resolved its
store, which backend served it (``local`` or ``remote``) and for whom.
"""

import logging
import logging.handlers
import os
import sys
import time
import uuid
from pathlib import Path

import structlog
from pythonjsonlogger import jsonlogger

# third-party loggers that only speak up at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "asyncpg", "uvicorn.access")


class LoggingConfig:
    """Logging settings read from the environment"""

    def __init__(self):
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_format = os.getenv("LOG_FORMAT", "json")  # json or text
        # rotating file output is on only when a path is given
        self.log_file_path = os.getenv("LOG_FILE_PATH") or None
        self.log_file_max_size = int(os.getenv("LOG_FILE_MAX_SIZE", "10485760"))
        self.log_file_backup_count = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))

        self.app_name = os.getenv("APP_NAME", "repeet-backend")
        self.environment = os.getenv("ENVIRONMENT", "development")
        self.timezone = os.getenv("REPEET_TIMEZONE", "UTC")
        self.app_version = "unknown"

    @property
    def level(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)

    def add_app_context(self, logger, method_name, event_dict):
        event_dict.setdefault("app_name", self.app_name)
        event_dict.setdefault("app_version", self.app_version)
        event_dict.setdefault("environment", self.environment)
        event_dict.setdefault("timezone", self.timezone)
        return event_dict

    def processors(self):
        renderer = structlog.processors.JSONRenderer() if self.log_format == "json" else structlog.dev.ConsoleRenderer()
        return [
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            self.add_app_context,
            renderer,
        ]

    def formatter(self) -> logging.Formatter:
        if self.log_format == "json":
            return jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s")
        return logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    def setup_logging(self, app_version: str = "unknown"):
        self.app_version = app_version

        structlog.configure(
            processors=self.processors(),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        root = logging.getLogger()
        root.handlers.clear()
        root.setLevel(self.level)
        handlers = [logging.StreamHandler(sys.stdout)]
        file_error = None
        if self.log_file_path:
            try:
                Path(self.log_file_path).parent.mkdir(parents=True, exist_ok=True)
                handlers.append(
                    logging.handlers.RotatingFileHandler(
                        self.log_file_path,
                        maxBytes=self.log_file_max_size,
                        backupCount=self.log_file_backup_count,
                        encoding="utf-8",
                    )
                )
            except OSError as e:
                file_error = str(e)
        formatter = self.formatter()
        for handler in handlers:
            handler.setLevel(self.level)
            handler.setFormatter(formatter)
            root.addHandler(handler)

        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        logger = get_logger("repeet.logging")
        if file_error:
            logger.error("Log file unavailable, logging to stdout only", log_file=self.log_file_path, error=file_error)
        logger.info(
            "Logging configured",
            log_level=self.log_level,
            log_format=self.log_format,
            log_file=self.log_file_path,
        )


logging_config = LoggingConfig()


def setup_logging(app_version: str = "unknown"):
    logging_config.setup_logging(app_version)


def get_logger(name: str):
    """Get a structured logger for the given name"""
    return structlog.get_logger(name)


def bind_storage_context(backend: str, owner_id: str) -> None:
    """Tag the rest of this request's log lines with the store serving it."""
    structlog.contextvars.bind_contextvars(backend=backend, owner_id=owner_id)


class LoggingMiddleware:
    """ASGI middleware that gives each HTTP request its own log context"""

    def __init__(self, app):
        self.app = app
        self.logger = get_logger("repeet.middleware")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=str(uuid.uuid4()),
            method=scope["method"],
            path=scope["path"],
        )
        self.logger.debug(
            "Request started",
            query_string=scope["query_string"].decode(),
            client_ip=scope["client"][0] if scope.get("client") else None,
        )

        status_code = None

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            self.logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.perf_counter() - started, 4),
            )
            raise
        self.logger.info(
            "Request completed",
            status_code=status_code,
            duration_seconds=round(time.perf_counter() - started, 4),
        )
