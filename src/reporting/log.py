"""Leveled log output to the console and the persistent log file."""

import logging
import sys
from pathlib import Path
from typing import Optional

# Extra levels between INFO (20) and WARNING (30)
OK = 25
SECTION = 27

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

logging.addLevelName(OK, 'OK')
logging.addLevelName(SECTION, 'SECTION')
logging.addLevelName(logging.WARNING, 'WARN')


def setup_logging(
    log_file: Optional[Path] = None,
    verbose: bool = False,
    json_output: bool = False,
) -> None:
    """Configure the root logger.

    Console output goes to stdout, or stderr in --json-output mode so that
    stdout carries only the JSON report. The log file is appended to; if it
    cannot be opened, logging continues on the console only.
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr if json_output else sys.stdout)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
        except OSError as e:
            root_logger.warning(f"Cannot open log file {log_file}: {e}")
        else:
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def section(logger: logging.Logger, title: str) -> None:
    """Log a section banner."""
    logger.log(SECTION, f"==> {title}")
