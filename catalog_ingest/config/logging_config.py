# catalog_ingest/config/logging_config.py

"""Run-scoped logging for catalog_ingest commands.

Every command run (``search``, ``topoff``, ``rescrape``, ``health``) writes
its own DEBUG log, ``logs/<command>_YYYYmmdd_HHMMSS.log``, so an
interrupted batch job can be traced back from its last checkpoint.  The
console only shows warnings and above (``LOG_LEVEL`` overrides this) to
keep stdout free for JSON output.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from catalog_ingest.config.settings import Settings

_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | "
    "%(funcName)s:%(lineno)d | %(message)s"
)
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty libraries used by the provider fallbacks
_NOISY_LOGGERS = ("urllib3", "asyncio", "charset_normalizer")

_CONSOLE_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def setup_logging(
    command: str = "run",
    logs_dir: Path | None = None,
) -> Path:
    """Attach file and console handlers to the ``catalog_ingest`` logger.

    Args:
        command: Prefix of the log file name, normally the CLI subcommand.
        logs_dir: Directory for log files; defaults to ``Settings.LOGS_DIR``.

    Returns:
        Path of this run's log file.  When handlers are already attached
        (repeated calls in one process) the existing file is returned.
    """
    project_logger = logging.getLogger("catalog_ingest")
    project_logger.setLevel(logging.DEBUG)
    for handler in project_logger.handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)

    target_dir = logs_dir or Settings.LOGS_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = target_dir / f"{command}_{stamp}.log"

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, _DATE_FORMAT))

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(
        _CONSOLE_LEVELS.get(Settings.LOG_LEVEL.upper(), logging.WARNING)
    )
    console_handler.setFormatter(
        logging.Formatter(_CONSOLE_FORMAT, _DATE_FORMAT)
    )

    project_logger.addHandler(file_handler)
    project_logger.addHandler(console_handler)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    project_logger.info("Logging to %s", log_file)
    return log_file
