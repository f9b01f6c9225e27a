import logging
import os
from pathlib import Path

__all__ = ["LOG_FORMAT", "logger"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("tracklens")
if not logger.handlers:
    logger.setLevel(os.getenv("TRACKLENS_LOG_LEVEL", "INFO").upper())
    _log_dir = Path(os.getenv("TRACKLENS_LOG_DIR", "./log"))
    _log_dir.mkdir(parents=True, exist_ok=True)
    _fh = logging.FileHandler(_log_dir / "tracklens.log", encoding="utf-8")
    _fh.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(_fh)
