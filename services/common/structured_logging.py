"""structlog setup shared by the aku bot and its sticker page server."""

from __future__ import annotations

import logging
import os
import re
import sys
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any

import structlog

Processor = Callable[[Any, str, dict[str, Any]], dict[str, Any]]

_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Floors for libraries that are chatty below them
_NOISY_LOGGERS: dict[str, int] = {
    "discord.client": logging.INFO,
    "discord.gateway": logging.INFO,
    "discord.http": logging.WARNING,
    "discord.player": logging.WARNING,
    "discord.voice_client": logging.WARNING,
    "discord.voice_state": logging.WARNING,
    "watchfiles": logging.WARNING,
    "watchfiles.main": logging.WARNING,
    "PIL": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.error": logging.WARNING,
}

ACCESS_LOGGER_NAME = "uvicorn.access"
ACCESS_EVENT = "static.access"

_ACCESS_LOG_PATTERN = re.compile(
    r'^(.+?):(\d+) - "(\w+) ([^"]+) (HTTP/\d(?:\.\d)?)" (\d+)$'
)


def _numeric_level(level: str) -> int:
    return _LEVELS.get((level or "").upper(), logging.INFO)


def _wants_full_tracebacks(explicit: bool | None, numeric_level: int) -> bool:
    """Explicit argument, then ``LOG_FULL_TRACEBACKS``, then DEBUG-only."""
    if explicit is not None:
        return explicit
    env_value = os.getenv("LOG_FULL_TRACEBACKS", "").strip().lower()
    if env_value in ("true", "1", "yes"):
        return True
    if env_value in ("false", "0", "no"):
        return False
    return numeric_level <= logging.DEBUG


def _add_service(service_name: str | None) -> Processor:
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if service_name:
            event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def _formatter(
    pre_chain: list[Any], *, json_logs: bool
) -> structlog.stdlib.ProcessorFormatter:
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _handlers(
    pre_chain: list[Any],
    *,
    json_logs: bool,
    stream: IO[str],
    log_file: Path | None,
) -> list[logging.Handler]:
    """A stream handler, plus an appending JSON file handler when ``log_file`` is set."""
    console = logging.StreamHandler(stream)
    console.setFormatter(_formatter(pre_chain, json_logs=json_logs))
    handlers: list[logging.Handler] = [console]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(_formatter(pre_chain, json_logs=True))
        handlers.append(file_handler)
    return handlers


def configure_logging(
    level: str = "INFO",
    *,
    json_logs: bool = True,
    service_name: str | None = None,
    stream: IO[str] | None = None,
    log_file: str | Path | None = None,
    full_tracebacks: bool | None = None,
) -> None:
    """Route structlog and stdlib logging through the same handlers.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL; anything else means INFO
        json_logs: Render the stream as JSON lines instead of console output
        service_name: Added as ``service`` to records that do not carry one
        stream: Where the stream handler writes (stdout by default)
        log_file: Also append every record, as JSON, to this file
        full_tracebacks: Structured tracebacks instead of formatted text;
            defaults to ``LOG_FULL_TRACEBACKS`` or to True at DEBUG

    Raises:
        OSError: If ``log_file`` cannot be opened
    """
    numeric_level = _numeric_level(level)
    exception_processor = (
        structlog.processors.dict_tracebacks
        if _wants_full_tracebacks(full_tracebacks, numeric_level)
        else structlog.processors.format_exc_info
    )
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _add_service(service_name),
        exception_processor,
    ]

    handlers = _handlers(
        pre_chain,
        json_logs=json_logs,
        stream=stream if stream is not None else sys.stdout,
        log_file=Path(log_file) if log_file else None,
    )
    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(numeric_level)
    logging.captureWarnings(True)

    for name, floor in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(floor, numeric_level))

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configure_access_logger(handlers, json_logs=json_logs, service_name=service_name)


def get_logger(
    name: str,
    *,
    correlation_id: str | None = None,
    service_name: str | None = None,
) -> structlog.stdlib.BoundLogger:
    logger = structlog.stdlib.get_logger(name)
    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)
    if service_name:
        logger = logger.bind(service=service_name)
    return logger


@contextmanager
def correlation_context(
    correlation_id: str | None,
) -> Generator[structlog.stdlib.BoundLogger, None, None]:
    """Bind ``correlation_id`` for the duration of the block.

    Contextvars are per asyncio task, so concurrent gateway events each keep
    their own id. On exit the enclosing id, if any, is restored.

    Example:
        with correlation_context("voice-1234") as logger:
            logger.info("presence.changed")
    """
    if not correlation_id:
        yield structlog.stdlib.get_logger()
        return

    outer = structlog.contextvars.get_contextvars().get("correlation_id")
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    try:
        yield structlog.stdlib.get_logger()
    finally:
        if outer is None:
            structlog.contextvars.unbind_contextvars("correlation_id")
        else:
            structlog.contextvars.bind_contextvars(correlation_id=outer)


def parse_access_log(message: str) -> dict[str, Any]:
    """Split a uvicorn access line into fields.

    ``'172.18.0.15:46132 - "GET /cats-0.png HTTP/1.1" 200'`` gives
    client_ip, client_port, method, path, http_version and status_code.
    Lines in any other shape are kept whole under ``message``.
    """
    match = _ACCESS_LOG_PATTERN.match(message.strip())
    if match is None:
        return {"event": ACCESS_EVENT, "message": message}

    client_ip, client_port, method, path, http_version, status_code = match.groups()
    return {
        "event": ACCESS_EVENT,
        "client_ip": client_ip,
        "client_port": int(client_port),
        "method": method,
        "path": path,
        "http_version": http_version,
        "status_code": int(status_code),
    }


def _access_processor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    if "status_code" in event_dict:
        return event_dict
    line = event_dict.get("event") or event_dict.get("message") or ""
    if isinstance(line, str) and line.strip():
        event_dict.pop("event", None)
        event_dict.pop("message", None)
        event_dict.update(parse_access_log(line))
    return event_dict


def _configure_access_logger(
    handlers: list[logging.Handler], *, json_logs: bool, service_name: str | None
) -> None:
    """Give ``uvicorn.access`` its own handlers that emit parsed request fields."""
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        _add_service(service_name),
        _access_processor,
    ]

    access_handlers: list[logging.Handler] = []
    for handler in handlers:
        access_handler: logging.Handler
        # FileHandler first: it is also a StreamHandler
        if isinstance(handler, logging.FileHandler):
            access_handler = logging.FileHandler(
                handler.baseFilename, mode="a", encoding="utf-8"
            )
            access_handler.setFormatter(_formatter(pre_chain, json_logs=True))
        elif isinstance(handler, logging.StreamHandler):
            access_handler = logging.StreamHandler(handler.stream)
            access_handler.setFormatter(_formatter(pre_chain, json_logs=json_logs))
        else:
            continue
        access_handlers.append(access_handler)

    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    for previous in access_logger.handlers:
        previous.close()
    access_logger.handlers = access_handlers
    access_logger.setLevel(logging.INFO)
    access_logger.propagate = False


__all__ = [
    "ACCESS_EVENT",
    "configure_logging",
    "correlation_context",
    "get_logger",
    "parse_access_log",
]
