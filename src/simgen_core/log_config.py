# --- src/simgen_core/log_config.py ---
import logging
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

LOG_FORMAT = "%(asctime)s [%(levelname)-5.5s] [%(name)s] %(message)s"
PACKAGE_LOGGER = "simgen_core"


def setup_logging(level=logging.INFO):
    """ Configures basic logging to stdout. """
    log_formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger() # Get the root logger

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(log_formatter)
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)
    logging.info("Logging configured.")


class _ThreadFilter(logging.Filter):
    """Accepts only records emitted from the thread that owns a compile job."""

    def __init__(self, thread_id: int):
        super().__init__()
        self.thread_id = thread_id

    def filter(self, record: logging.LogRecord) -> bool:
        return record.thread == self.thread_id


@contextmanager
def job_log(job_dir: Path, file_name: str = "err") -> Iterator[Path]:
    """
    Attaches a job-scoped log file to the package logger for the duration of a
    compile job.

    Records from other threads (other concurrent jobs) are filtered out, so the
    file holds only this job's warnings and errors. The handler is removed and
    closed on every exit path.

    Args:
        job_dir: Directory of the job. Created if missing.
        file_name: Name of the log file inside job_dir.

    Yields:
        The path of the log file.
    """
    job_dir = Path(job_dir)
    job_dir.mkdir(parents=True, exist_ok=True)
    log_path = job_dir / file_name

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(logging.WARNING)
    handler.addFilter(_ThreadFilter(threading.get_ident()))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.addHandler(handler)
    try:
        yield log_path
    finally:
        package_logger.removeHandler(handler)
        handler.flush()
        handler.close()
