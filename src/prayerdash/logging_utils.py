from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class LoggerFactory:
    @staticmethod
    def create(
        name: str,
        log_file: Optional[Union[str, Path]] = None,
        level: Optional[str] = None,
    ) -> logging.Logger:
        """Configure the named logger once; later calls return it untouched.

        Level comes from ``level``, then ``PRAYERDASH_LOG_LEVEL``, then INFO.
        Pass ``""`` to configure the root logger so per-class loggers share
        the same handlers.
        """
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        resolved = (level or os.getenv("PRAYERDASH_LOG_LEVEL") or "INFO").upper()
        logger.setLevel(getattr(logging, resolved, logging.INFO))
        formatter = logging.Formatter(LOG_FORMAT)

        handlers = [logging.StreamHandler()]
        if log_file is not None:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            # Rotate at about 1 MB and keep three backups.
            handlers.append(
                RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3)
            )

        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        return logger
