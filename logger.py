from __future__ import annotations

import json
import logging
import os
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping

from rich.console import Console
from rich.logging import RichHandler


_CONTEXT: Dict[str, ContextVar[str | None]] = {
    "request_id": ContextVar("request_id", default=None),
    "user_id": ContextVar("user_id", default=None),
}

# Record attributes rendered after the message, in this order.
_SUFFIX_FIELDS = ("request_id", "user_id", "stage", "payload")

_QUIET_LOGGERS = ("aiohttp.access", "aiohttp.server", "httpx", "httpcore")

LOG_FILE_NAME = "chinabot.log"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


class _ContextLoggerAdapter(logging.LoggerAdapter):
    """Adapter accepting ``user_id``/``stage``/``payload``/``request_id`` kwargs.

    Missing ``request_id`` and ``user_id`` are filled from the values bound
    with :func:`bind_context` for the current task.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra: Dict[str, Any] = dict(kwargs.get("extra") or {})
        extra.setdefault("module_name", self.extra.get("module_name") or self.logger.name)

        for field in _SUFFIX_FIELDS:
            value = kwargs.pop(field, None) or extra.pop(field, None)
            if value is None and field in _CONTEXT:
                value = _CONTEXT[field].get()
            if value is not None:
                extra[field] = value

        kwargs["extra"] = extra
        return msg, kwargs


def mask_user_id(user_id: Any) -> str:
    # LINE ids are "U" + 32 hex chars; the tail is enough to correlate.
    text = str(user_id)
    if len(text) <= 10:
        return text
    return f"{text[:1]}…{text[-6:]}"


def _render(field: str, value: Any) -> str:
    if field == "request_id":
        return f"rid={value}"
    if field == "user_id":
        return f"user_id={mask_user_id(value)}"
    if field == "stage":
        return f"stage={value}"
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except TypeError:
        return str(value)


class _CompactFormatter(logging.Formatter):
    """``[time] [LEVEL] [module] message (rid=…, user_id=…, stage=…, {payload})``."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        parts = [
            _render(field, getattr(record, field))
            for field in _SUFFIX_FIELDS
            if getattr(record, field, None)
        ]
        suffix = f" ({', '.join(parts)})" if parts else ""

        text = record.message
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            text = f"{text}\n{record.exc_text}"

        module_name = getattr(record, "module_name", record.name)
        stamp = self.formatTime(record, self.datefmt)
        return f"[{stamp}] [{record.levelname}] [{module_name}] {text}{suffix}"


class _DomainInfoFilter(logging.Filter):
    """Console keeps INFO records only when they are domain milestones."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno != logging.INFO or bool(getattr(record, "domain", False))


def setup_logging(
    level: str | None = None,
    log_dir: str | Path | None = None,
    *,
    noise: str | None = None,
) -> logging.Logger:
    """Install the console and rotating file handlers on the root logger once.

    ``noise="debug"`` shows every INFO record on the console; otherwise only
    :func:`info_domain` milestones are shown there. The file gets everything
    at ``level`` and above.
    """

    root = logging.getLogger()
    if getattr(root, "_chinabot_configured", False):
        return root
    for handler in list(root.handlers):
        root.removeHandler(handler)

    resolved = logging.getLevelName((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    console = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_level=False,
        show_path=False,
        markup=False,
    )
    console.setFormatter(_CompactFormatter(datefmt="%H:%M:%S"))
    if (noise or os.getenv("LOG_NOISE", "low")).strip().lower() != "debug":
        console.addFilter(_DomainInfoFilter())
    root.addHandler(console)

    directory = Path(log_dir or os.getenv("LOG_DIR", "logs"))
    directory.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setFormatter(_CompactFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root._chinabot_configured = True  # type: ignore[attr-defined]
    return root


def get_logger(name: str) -> logging.LoggerAdapter:
    return _ContextLoggerAdapter(logging.getLogger(name), {"module_name": name})


def info_domain(
    module: str,
    message: str,
    *,
    stage: str | None = None,
    user_id: str | None = None,
    **context: Any,
) -> None:
    """Log a milestone (consent, plan change, broadcast) shown on the console.

    Keyword arguments other than ``stage`` and ``user_id`` become the payload.
    """

    get_logger(module).info(
        message,
        extra={"domain": True},
        stage=stage,
        user_id=user_id,
        payload=context or None,
    )


def bind_context(**values: str | None) -> Dict[str, Any]:
    """Bind ``request_id``/``user_id`` for the current task; pass the result to reset."""

    tokens: Dict[str, Any] = {}
    for field, value in values.items():
        if field not in _CONTEXT:
            raise TypeError(f"unknown logging context field: {field}")
        if value is not None:
            tokens[field] = _CONTEXT[field].set(value)
    return tokens


def reset_context(tokens: Mapping[str, Any]) -> None:
    for field, token in tokens.items():
        _CONTEXT[field].reset(token)


__all__ = [
    "bind_context",
    "get_logger",
    "info_domain",
    "mask_user_id",
    "reset_context",
    "setup_logging",
]
