"""
Logging setup for the BookVerse web client.

Console output always, a size-rotated file when LOG_FILE is set. Both handlers
mask bearer tokens, passwords, OTP codes and e-mail addresses so that request
traces from the API client never leak credentials into the logs.
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Pattern


class SecretMaskingFilter(logging.Filter):
    """Replace credentials in log records with [REDACTED_*] markers."""

    PATTERNS: list[tuple[Pattern, str]] = [
        (re.compile(r'(Bearer\s+)([A-Za-z0-9_\-\.]+)', re.IGNORECASE), r'\1[REDACTED_BEARER_TOKEN]'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([A-Za-z0-9_\-\.]{20,})(["\']?)', re.IGNORECASE), r'\1[REDACTED_TOKEN]\3'),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^\s"\',}]+)(["\']?)', re.IGNORECASE), r'\1[REDACTED_PASSWORD]\3'),
        (re.compile(r'(otp["\']?\s*[:=]\s*["\']?)(\d{4,8})(["\']?)', re.IGNORECASE), r'\1[REDACTED_OTP]\3'),
        (re.compile(r'\b([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b'), '[REDACTED_EMAIL]'),
    ]

    def mask(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg:
            record.msg = self.mask(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self.mask(v) if isinstance(v, str) else v for k, v in record.args.items()}
            else:
                record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        # records are rewritten, never dropped
        return True


def setup_logging(level: str = "INFO", log_file: str | None = None, max_bytes: int = 5 * 1024 * 1024,
                  backup_count: int = 5) -> None:
    """
    Configure the root logger once at application start.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path of a rotating log file
        max_bytes: Rotation size of the log file
        backup_count: Number of rotated files kept
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(
        fmt='%(asctime)s | %(name)-18s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(log_level)
        handler.addFilter(SecretMaskingFilter())
        root_logger.addHandler(handler)

    # aiohttp access noise is not useful for a client
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.info("Logging initialized: level=%s file=%s", level.upper(), log_file or "-")
