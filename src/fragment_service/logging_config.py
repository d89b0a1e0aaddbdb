import logging
import os
import re
import sys


class SensitiveDataFilter(logging.Filter):
    """Mask credentials that end up in log records."""

    PATTERNS = [
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r"\1***MASKED***"),
        (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)', re.IGNORECASE), r"\1***MASKED***"),
        (re.compile(r"(basic\s+)([A-Za-z0-9+/=]+)", re.IGNORECASE), r"\1***MASKED***"),
        (re.compile(r"(\$argon2(?:id|i|d)\$)(\S+)"), r"\1***MASKED***"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        return True

    def _mask(self, value: str) -> str:
        for pattern, replacement in self.PATTERNS:
            value = pattern.sub(replacement, value)
        return value


def setup_logging(component_name: str = "fragment_service", log_level: str | None = None) -> logging.Logger:
    """Configure the package logger with a stdout handler.

    Args:
        component_name: Logger to configure; child module loggers inherit it.
        log_level: DEBUG, INFO, WARNING or ERROR. Defaults to LOG_LEVEL env var or INFO.

    Returns:
        The configured logger. Calling again does not add a second handler.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(component_name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler.addFilter(SensitiveDataFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger
