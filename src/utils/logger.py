"""Logging helpers with device identifier masking."""

import logging
import re

# Cache for loggers
_loggers: dict[str, logging.Logger] = {}
_level: int = logging.INFO

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class SensitiveFormatter(logging.Formatter):
    """Formatter that masks device identifiers and secrets.

    Platform device and group identifiers are stable per machine and can be
    used for fingerprinting, so they never reach log output in full.
    """

    SENSITIVE_PATTERNS = [
        (r'(device_id|deviceId|group_id|groupId|serial)'
         r'[\'"]?\s*[:=]\s*[\'"]?([^\s\'",}]{9,})', r'\1=***MASKED***'),
        (r'(api_key|secret|token|password|credential)'
         r'[\'"]?\s*[:=]\s*[\'"]?([^\s\'",}]+)', r'\1=***REDACTED***'),
        (r'\b([0-9a-fA-F]{32,})\b', r'***MASKED***'),  # Hex device ids
    ]

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(fmt, datefmt)

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record and mask identifiers.

        Args:
            record: Log record to format

        Returns:
            Formatted and sanitized log message
        """
        original = super().format(record)
        return self._mask_sensitive(original)

    def _mask_sensitive(self, text: str) -> str:
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
        return text


def get_logger(name: str, use_sensitive_formatter: bool = True) -> logging.Logger:
    """Get or create a logger with the given name.

    Args:
        name: Logger name (usually __name__)
        use_sensitive_formatter: Whether to mask device identifiers

    Returns:
        Configured logger instance
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        handler = logging.StreamHandler()
        if use_sensitive_formatter:
            handler.setFormatter(SensitiveFormatter(LOG_FORMAT))
        else:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(_level)

    _loggers[name] = logger
    return logger


def set_log_level(level: str | int) -> None:
    """Apply a log level to every logger created through get_logger.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level
    """
    global _level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    _level = level
    for logger in _loggers.values():
        logger.setLevel(level)
