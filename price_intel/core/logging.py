"""Pipeline logging with Loguru + Slack alerts.

Every record carries the job and run it belongs to (``-`` outside a run) and
the partition being written, so one grep over ``pipeline.log`` follows a
single nightly run or a single county from start to finish.
"""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import httpx
from loguru import logger

from price_intel.core.config import settings

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra[name]}:{function}:{line} | "
    "job={extra[job]} run={extra[run_id]} partition={extra[partition]} | {message}"
)

# Context keys the format relies on; contextualize() overrides them per run
DEFAULT_EXTRA = {"name": "price_intel", "job": "-", "run_id": "-", "partition": "-"}

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Send SQLAlchemy, alembic and uvicorn records through Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _alert_text(record: Any) -> str:
    extra = record["extra"]
    where = extra.get("job", "-")
    if extra.get("run_id", "-") != "-":
        where = f"{where} (run {extra['run_id']})"
    if extra.get("partition", "-") != "-":
        where = f"{where} [{extra['partition']}]"
    return f"[{record['level'].name}] {where}: {record['message']}"


def _slack_sink(message: Any) -> None:
    if not settings.SLACK_WEBHOOK_URL:
        return
    try:
        httpx.post(
            settings.SLACK_WEBHOOK_URL,
            json={"text": _alert_text(message.record)},
            timeout=5.0,
        )
    except httpx.HTTPError:
        # Logging here would feed the failure back into this sink
        pass


def _normalize_level(raw: str | None) -> str:
    level = (raw or "INFO").strip().upper()
    level = {"WARN": "WARNING", "FATAL": "CRITICAL"}.get(level, level)
    if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
        level = "INFO"
    return level


def configure_logging() -> None:
    """Console and rotating ``pipeline.log`` sinks, plus Slack for errors when configured."""
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    level = _normalize_level(settings.effective_log_level)

    logger.remove()
    logger.configure(extra=dict(DEFAULT_EXTRA))
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, backtrace=False, diagnose=False)
    logger.add(
        log_dir / "pipeline.log",
        level=level,
        format=LOG_FORMAT,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )

    if settings.SLACK_WEBHOOK_URL:
        logger.add(_slack_sink, level="ERROR", enqueue=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False


def get_logger(name: str) -> logger.__class__:
    return logger.bind(name=name)


@contextmanager
def run_context(job: str, run_id: Any) -> Iterator[None]:
    """Tag every record logged inside the block with its pipeline run."""
    with logger.contextualize(job=job, run_id=str(run_id)):
        yield


@contextmanager
def partition_context(label: str) -> Iterator[None]:
    """Tag records with the ZIP prefix or county currently being written."""
    with logger.contextualize(partition=label):
        yield


configure_logging()
