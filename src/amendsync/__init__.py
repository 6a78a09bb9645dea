"""AmendSync - collaborative amendment editing core.

Reconciles in-progress local edits against a continuously updated remote
document, keeps a numbered version history, and turns inline suggestions
into votable change requests.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"


def _setup_logging(log_dir: Path | None = None) -> None:
    """Configure logging to both console and rotating file."""
    from amendsync.config import get_settings

    app_config = get_settings().app
    log_dir = log_dir or app_config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"amendsync.{os.getpid()}.log"

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # File handler - detailed logging with rotation (10MB, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(app_config.log_level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    logging.info("Logging configured. Log file: %s", log_file.absolute())
