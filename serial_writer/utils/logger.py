"""Loguru sinks for chapter runs.

Every record carries the project and chapter of the run that emitted it.
`run_context` binds both for the duration of a run; records emitted outside
a run show "-".
"""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[project_id]}</magenta>:<magenta>{extra[chapter]}</magenta> - <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | project={extra[project_id]} chapter={extra[chapter]} | "
    "{name}:{function}:{line} - {message}"
)
UNBOUND = "-"

_configured = False


def setup_logger(log_level: str = "INFO", log_file: Optional[Path] = None):
    global _configured

    if _configured and log_file is None:
        return logger

    logger.remove()
    logger.configure(extra={"project_id": UNBOUND, "chapter": UNBOUND})

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=log_level, colorize=True)

    # Chapter runs are long; keep a full debug trail on disk when asked
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            enqueue=True,
        )

    _configured = True
    return logger


@contextmanager
def run_context(project_id: str, chapter: Optional[int] = None):
    """Tag records emitted inside the block, including from awaited coroutines."""
    with logger.contextualize(project_id=project_id, chapter=UNBOUND if chapter is None else chapter):
        yield


def reset_logger() -> None:
    """Forget the configured sinks so the next setup_logger call starts fresh."""
    global _configured
    logger.remove()
    _configured = False
