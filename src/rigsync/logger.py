"""Logging setup for the rigsync agent."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import LoggingConfig

LOGGER_NAME = "rigsync"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# requests logs every connection at INFO through urllib3
NOISY_LOGGERS = ("urllib3",)


def configure_logging(
  config: LoggingConfig,
  root_dir: Path,
  level_override: Optional[str] = None,
) -> logging.Logger:
  level_name = (level_override or config.level).upper()
  logger = logging.getLogger(LOGGER_NAME)
  logger.setLevel(getattr(logging, level_name, logging.INFO))
  logger.propagate = False
  logger.handlers.clear()

  formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
  console = logging.StreamHandler()
  console.setFormatter(formatter)
  logger.addHandler(console)

  if config.file:
    log_path = (root_dir / config.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    rotating = RotatingFileHandler(
      log_path,
      maxBytes=config.max_bytes,
      backupCount=config.backup_count,
      encoding="utf-8",
    )
    rotating.setFormatter(formatter)
    logger.addHandler(rotating)

  for name in NOISY_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)

  return logger
