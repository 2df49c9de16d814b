"""Loguru configuration and helpers shared by the whole service.

Every record carries ``source``, ``job_id`` and ``tags`` extras. Mutations of
the disk run inside :func:`operation_context`, so one upload or clear can be
followed across the disk, writer and gadget logs by its job id.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "EMBROIDERY_BUDDY_LOG_DIR",
        Path.home() / ".local" / "state" / "embroidery-buddy" / "logs",
    )
)

_RECORD_FORMAT = "{level: <8} | {extra[source]: <8} | {extra[job_id]: <20} | {message}"


def _add_file_sink(path: Path, level: str, rotation: str, retention: str, **options) -> None:
    logger.add(
        path,
        level=level,
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        **options,
    )


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Replace loguru's default handler with the service sinks.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ (TRACE+ with ``trace``) when debug or trace is enabled
    - structured.jsonl: serialized INFO+ records for analysis tools

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging, which includes every configfs
            attribute write
        log_dir: Custom log directory (defaults to ~/.local/state/embroidery-buddy/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    verbose = debug or trace
    detail_level = "TRACE" if trace else "DEBUG"

    logger.add(
        sys.stderr,
        level=detail_level if verbose else "INFO",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | <level>" + _RECORD_FORMAT + "</level>",
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    _add_file_sink(
        log_dir / "operations.log",
        "INFO",
        rotation="5 MB",
        retention="7 days",
        backtrace=False,
        diagnose=False,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | " + _RECORD_FORMAT,
    )

    if verbose:
        _add_file_sink(
            log_dir / "debug.log",
            detail_level,
            rotation="10 MB",
            retention="3 days",
            backtrace=True,
            diagnose=True,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {extra[tags]} | " + _RECORD_FORMAT,
        )

    _add_file_sink(
        log_dir / "structured.jsonl",
        "INFO",
        rotation="10 MB",
        retention="7 days",
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """Return the global logger bound to whichever of the context fields are given."""
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Log the start, completion and failure of one operation under a new job id.

    Failures are logged with their type and re-raised unchanged.

    Args:
        operation: Operation name (e.g., "transaction", "clear")
        **details: Extra fields attached to every record in the block

    Yields:
        Logger bound with the job id

    Example:
        with operation_context("transaction", disk="/tmp/embroidery.img") as log:
            log.debug("Writing /rose.pes")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = get_logger(job_id=job_id, tags=[operation], source=operation)
        started = time.monotonic()
        log.info(f"{title} started", **details)

        try:
            yield log
        except Exception as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(f"{title} completed", duration_seconds=round(time.monotonic() - started, 2))


class LoggerFactory:
    """Domain loggers with their ``source`` and ``tags`` pre-bound."""

    @staticmethod
    def for_disk() -> Logger:
        """Logger for virtual disk, writers and transactions."""
        return logger.bind(source="disk", tags=["disk", "storage"])

    @staticmethod
    def for_gadget() -> Logger:
        """Logger for USB gadget lifecycle."""
        return logger.bind(source="gadget", tags=["usb", "hardware"])

    @staticmethod
    def for_configfs() -> Logger:
        """Logger for individual configfs writes, emitted at TRACE."""
        return logger.bind(source="configfs", tags=["configfs", "hardware"])

    @staticmethod
    def for_system() -> Logger:
        return logger.bind(source="system", tags=["system"])
