"""Centralized logging for command-engine.

The engine is a library embedded in a chat bot process, so it follows the
library conventions:
- NullHandler on the library root logger, no other handlers by default
- COMMAND_ENGINE_LOG_LEVEL env var for level control
- configure_logging() for the operator CLI

CLI output format (context passed through extra={...} follows as key=value):
    WARNING [2026-02-25 10:02:54] command_engine.coordinator - message tenant_id=g1 status=timeout

Log emission never blocks a message handler: the CLI handler is a
QueueHandler drained by a daemon QueueListener thread into click.echo(err=True).
When the queue is full, records are dropped.
"""

import contextlib
import json
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "command_engine"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("COMMAND_ENGINE_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and missing keys (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 4096

# Attributes every LogRecord carries; anything else came from extra={...}
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def _render(value: object) -> str:
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, separators=(",", ":"), default=str)
    text = str(value)
    return json.dumps(text) if not text or any(c.isspace() for c in text) else text


class _ContextFormatter(logging.Formatter):
    """Appends the record's structured context as key=value pairs.

    Output:
        ERROR [...] command_engine.audit - Audit write failed audit={"tenant_id":"g1",...} error_type=AuditSinkError
    """

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        line = super().formatMessage(record)
        context = " ".join(
            f"{key}={_render(value)}"
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return f"{line} {context}" if context else line


class _ClickHandler(logging.Handler):
    """Writes formatted records to stderr via click.echo with dim styling."""

    def __init__(self) -> None:
        super().__init__()
        self.formatter = _ContextFormatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            click.echo(click.style(msg, dim=True), err=True)
        except BlockingIOError:
            pass  # stderr buffer full
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """Queue-backed handler that never blocks the caller."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        """Same-process queue, no pickling needed."""
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    All command_engine modules use this instead of logging.getLogger()
    directly so the hierarchy stays under LIBRARY_LOGGER_NAME.
    """
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Configure library logging for the CLI.

    Adds a _NonBlockingHandler if none exists (idempotent), then sets the
    log level. Applications that install their own handlers are unaffected.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides env var.
        quiet: If True, set level to ERROR. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
