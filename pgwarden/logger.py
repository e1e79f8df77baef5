from __future__ import annotations

import logging
import re
import sys
from functools import lru_cache
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Protocol, cast

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from structlog.processors import CallsiteParameter

if TYPE_CHECKING:
    from structlog.types import EventDict, Processor, WrappedLogger

type BoundLogger = structlog.stdlib.BoundLogger
type LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"]

REDACTED = "***"

# libpq keyword strings (password='x' / password=x) and URL credentials (//user:x@)
_CONNINFO_PASSWORD = re.compile(r"(password=)('(?:[^'\\]|\\.)*'|\S+)")
_URL_PASSWORD = re.compile(r"(//[^:/@\s]+:)([^@\s]+)(@)")


class LoggingConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PGWARDEN_LOG_",
        extra="ignore",
        frozen=True,
    )

    level: LogLevel = Field(default="INFO")
    json_output: bool = Field(default=False)
    service_name: str = Field(default="pgwarden")
    file_path: str | None = Field(default=None, description="Rotating log file; stderr when unset")
    max_bytes: int = Field(default=50_000_000, ge=1024)
    backup_count: int = Field(default=10, ge=0)
    library_log_levels: dict[str, LogLevel] = Field(default_factory=lambda: {"asyncpg": "WARNING"})
    redact_secrets: bool = Field(default=True, description="Mask passwords in connection strings and argv")


def _redact(value: Any) -> Any:
    if isinstance(value, str):
        value = _CONNINFO_PASSWORD.sub(rf"\1{REDACTED}", value)
        return _URL_PASSWORD.sub(rf"\1{REDACTED}\3", value)
    if isinstance(value, list | tuple):
        return type(value)(_redact(v) for v in value)
    return value


def redact_secrets(_logger: WrappedLogger, _method_name: str, event_dict: EventDict) -> EventDict:
    """Mask passwords in every string (or sequence of strings) of the event.

    Command argv for pg_rewind and clone carries a full connection string,
    so redaction runs before any renderer.
    """
    return {key: _redact(value) for key, value in event_dict.items()}


class FormatterStrategy(Protocol):
    def build_processors(self, config: LoggingConfig) -> list[Processor]: ...


class OutputStrategy(Protocol):
    def create_handler(self, config: LoggingConfig) -> logging.Handler: ...


def _shared_processors(config: LoggingConfig, timestamper: Processor) -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.CallsiteParameterAdder(parameters=[CallsiteParameter.MODULE, CallsiteParameter.LINENO]),
        timestamper,
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if config.redact_secrets:
        processors.append(redact_secrets)
    return processors


class JsonFormatterStrategy:
    def build_processors(self, config: LoggingConfig) -> list[Processor]:
        return [
            *_shared_processors(config, structlog.processors.TimeStamper(fmt="iso", utc=True)),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]


class ConsoleFormatterStrategy:
    def build_processors(self, config: LoggingConfig) -> list[Processor]:
        timestamper = structlog.processors.TimeStamper(fmt="%Y-%m-%dT%H:%M:%S%z", utc=False)
        return [
            *_shared_processors(config, timestamper),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ]


class RotatingFileOutputStrategy:
    def create_handler(self, config: LoggingConfig) -> logging.Handler:
        if not config.file_path:
            raise ValueError("file_path required for RotatingFileOutputStrategy")

        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        handler.setLevel(config.level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler


class StderrOutputStrategy:
    def create_handler(self, config: LoggingConfig) -> logging.Handler:
        # stdout carries command output (status tables, hook results)
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(config.level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        return handler


class LoggerFactory:
    @staticmethod
    def create(config: LoggingConfig) -> BoundLogger:
        formatter: FormatterStrategy = JsonFormatterStrategy() if config.json_output else ConsoleFormatterStrategy()

        structlog.configure(
            processors=formatter.build_processors(config),
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        output: OutputStrategy = RotatingFileOutputStrategy() if config.file_path else StderrOutputStrategy()

        root = logging.getLogger()
        root.handlers = [output.create_handler(config)]
        root.setLevel(config.level)

        for lib_name, lib_level in config.library_log_levels.items():
            logging.getLogger(lib_name).setLevel(lib_level)

        structlog.contextvars.bind_contextvars(service=config.service_name)

        return cast(BoundLogger, structlog.get_logger())


@lru_cache(maxsize=1)
def _get_default_config() -> LoggingConfig:
    return LoggingConfig()


def configure_logging(config: LoggingConfig | None = None, *, level: LogLevel | None = None) -> None:
    """Configure structlog and the stdlib root logger.

    ``level`` overrides the configured level, e.g. from a CLI flag.
    """
    config = config if config is not None else _get_default_config()
    if level is not None:
        config = config.model_copy(update={"level": level})
    LoggerFactory.create(config)


def get_logger(name: str | None = None) -> BoundLogger:
    return cast(BoundLogger, structlog.get_logger(name))


def bind_context(**kwargs: str | float | bool | None) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)
