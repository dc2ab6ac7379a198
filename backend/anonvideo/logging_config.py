"""
Logging setup for the anonymization service.

Environment variables:
- LOG_LEVEL: root level (default INFO)
- LOG_FORMAT: "structured" (default) or "simple"
- LOG_LEVEL_PIPELINE / _ENGINES / _TRANSCRIPTION / _DELIVERY: per-area overrides

Log lines emitted while a job runs carry the job's source name, taken
from a context variable the orchestrator binds for the job's task. The
variable is copied into ``asyncio.to_thread`` workers, so ffmpeg and
detector logs are tagged too.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from anonvideo.config import Settings


# Settings suffix -> logger prefixes the override applies to
AREA_LOGGERS: dict[str, tuple[str, ...]] = {
    "pipeline": ("anonvideo.services.pipeline", "anonvideo.services.job_manager"),
    "engines": ("anonvideo.services.engines", "anonvideo.services.stages", "anonvideo.utils.media_utils"),
    "transcription": ("anonvideo.services.providers", "anonvideo.services.transcriber"),
    "delivery": ("anonvideo.services.delivery",),
}

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_current_job: ContextVar[str | None] = ContextVar("current_job", default=None)


@contextmanager
def bind_job(job: str) -> Iterator[None]:
    """Tag log records emitted inside the block with a job name."""
    token = _current_job.set(job)
    try:
        yield
    finally:
        _current_job.reset(token)


class JobContextFilter(logging.Filter):
    """Copies the bound job name onto each record as ``record.job``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job = _current_job.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """
    Pipe-separated formatter.

    Format: timestamp | level | logger | job | message

    Logger names lose their ``anonvideo.`` / ``anonvideo.services.``
    prefix to keep the column narrow.
    """

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        for prefix in ("anonvideo.services.", "anonvideo."):
            if name.startswith(prefix):
                name = name[len(prefix):]
                break

        line = (
            f"{self.formatTime(record, '%Y-%m-%d %H:%M:%S')} | "
            f"{record.levelname:8} | "
            f"{name:24} | "
            f"{getattr(record, 'job', '-'):16} | "
            f"{record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(settings: "Settings") -> None:
    """
    Install the root handler and per-area levels.

    Safe to call more than once: existing root handlers are replaced.
    """
    root_level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(root_level, int):
        root_level = logging.INFO

    if settings.log_format == "structured":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(job)s] %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(JobContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    root.addHandler(handler)

    for area, prefixes in AREA_LOGGERS.items():
        override = getattr(settings, f"log_level_{area}", None)
        if not override:
            continue
        level = logging.getLevelName(override.upper())
        if isinstance(level, int):
            for prefix in prefixes:
                logging.getLogger(prefix).setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
