"""
Central logging utilities for the bot engine.
Provides rotating file logging and console logging with secret masking.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

SENSITIVE_PAT = re.compile(
    r"(api[_-]?key|api[_-]?secret|secret|token|password|passphrase|signature)(['\"]?\s*[:=]\s*['\"]?)([A-Za-z0-9+/=._-]{6,})",
    re.I,
)


def _mask_str(s: str) -> str:
    def _mask_val(m):
        val = m.group(3)
        return f"{m.group(1)}{m.group(2)}{val[:2]}***{val[-2:]}"
    return SENSITIVE_PAT.sub(_mask_val, s)


class SanitizingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return _mask_str(super().format(record))


class LogType(Enum):
    SYSTEM = "system"
    ERROR = "error"
    TRADE = "trade"
    NETWORK = "network"
    BOT = "bot"
    SECURITY = "security"


class LogLevel(Enum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LoggerManager:
    """Sets up application-wide logging sinks and exposes helpers."""
    def __init__(self, log_dir: Path | str = "logs", level: int = logging.INFO,
                 max_bytes: int = 10 * 1024 * 1024, backup_count: int = 5, log_to_file: bool = True):
        self.log_dir = Path(log_dir)
        self.level = level
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.log_to_file = log_to_file
        self._configured = False

    @classmethod
    def from_config(cls, settings: Dict) -> "LoggerManager":
        level = getattr(logging, str(settings.get("level", "INFO")).upper(), logging.INFO)
        return cls(
            log_dir=settings.get("dir", "logs"),
            level=level,
            max_bytes=int(settings.get("max_file_size_mb", 10)) * 1024 * 1024,
            backup_count=int(settings.get("max_files", 5)),
            log_to_file=bool(settings.get("log_to_file", True)),
        )

    def setup(self) -> logging.Logger:
        logger = logging.getLogger()
        logger.setLevel(self.level)

        # Remove existing handlers to avoid duplicates in repeated setup() calls
        for h in list(logger.handlers):
            logger.removeHandler(h)

        fmt = SanitizingFormatter('[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

        # Console
        ch = logging.StreamHandler()
        ch.setLevel(self.level)
        ch.setFormatter(fmt)
        logger.addHandler(ch)

        # Rotating file
        if self.log_to_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            fh = logging.handlers.RotatingFileHandler(
                self.log_dir / "engine.log", maxBytes=self.max_bytes,
                backupCount=self.backup_count, encoding="utf-8",
            )
            fh.setLevel(self.level)
            fh.setFormatter(fmt)
            logger.addHandler(fh)

        self._configured = True
        logging.getLogger(__name__).info("Logger configured.")
        return logger

    def get_recent_logs(self, limit: int = 100) -> List[Dict]:
        """Return last 'limit' lines from log files."""
        out: List[Dict] = []
        for lf in sorted(self.log_dir.glob("*.log")):
            with lf.open("r", encoding="utf-8") as f:
                for line in f.readlines()[-limit:]:
                    out.append({"file": lf.name, "line": line.strip()})
        return out[-limit:]

    def cleanup_old_logs(self, days_to_keep: int = 30) -> int:
        """Remove rotated log files older than days_to_keep."""
        removed = 0
        cutoff = datetime.now() - timedelta(days=days_to_keep)
        for lf in self.log_dir.glob("*.log*"):
            if lf.is_file() and datetime.fromtimestamp(lf.stat().st_mtime) < cutoff:
                lf.unlink()
                removed += 1
                logging.getLogger(__name__).info(f"Deleted old log file: {lf.name}")
        return removed


def get_logger(name: str | None = None, log_type: Optional[LogType] = None, level: LogLevel | int | None = None):
    logger = logging.getLogger(name or __name__)
    if level is not None:
        logger.setLevel(level.value if isinstance(level, LogLevel) else int(level))
    # Attach log_type as an attribute for consumers that might read it
    setattr(logger, 'log_type', log_type.value if isinstance(log_type, LogType) else log_type)
    return logger
