"""Logging setup shared by the CLI and the status API."""

import logging
from logging.handlers import RotatingFileHandler

from .config import Config, config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(cfg: Config = config, console: bool = True):
    """Configure the root logger with a rotating file handler and optional console output."""
    log_formatter = logging.Formatter(LOG_FORMAT)

    # Rotating file handler (auto-compaction)
    file_handler = RotatingFileHandler(
        cfg.supervisor_log,
        maxBytes=cfg.log_max_bytes,
        backupCount=cfg.log_backup_count,
    )
    file_handler.setFormatter(log_formatter)
    handlers = [file_handler]

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(log_formatter)
        handlers.append(console_handler)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )
