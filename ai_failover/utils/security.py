"""Credential redaction for logs and diagnostics.

Provider errors routinely echo request URLs and headers back; Google AI
Studio even carries the API key as a ``key=`` query parameter. Everything
that reaches a log line, a health record or a failure report passes through
``LogSanitizer`` first.
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

REDACTED = "***REDACTED***"


class LogSanitizer:
    """Sanitizes sensitive information from logs and debug output.

    Removes API keys, tokens, passwords, and other sensitive data
    from dictionaries, strings, and log messages.
    """

    # (pattern, replacement) pairs; prefixes are kept so the message stays readable
    SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
        (re.compile(r'(?i)((?:api[_-]?key|token|secret|password)["\']?\s*[:=]\s*["\']?)[^\s"\'&,]+'), r"\1" + REDACTED),
        (re.compile(r"(?i)(authorization:?\s*(?:bearer\s+)?|bearer\s+)[^\s\"',]+"), r"\1" + REDACTED),
        (re.compile(r"(?i)([?&]key=)[^&\s\"']+"), r"\1" + REDACTED),
        (re.compile(r"sk-[a-zA-Z0-9_-]{20,}"), REDACTED),
        (re.compile(r"gh[pousr]_[a-zA-Z0-9]{20,}"), REDACTED),
        (re.compile(r"AIza[0-9A-Za-z_-]{30,}"), REDACTED),
    ]

    SENSITIVE_KEYS = {
        "api_key", "apikey", "token", "secret", "password", "authorization",
        "bearer", "credential", "api-key", "x-goog-api-key",
    }

    @classmethod
    def sanitize_string(cls, text: Any) -> str:
        """Sanitize sensitive information from a string.

        Args:
            text: String potentially containing sensitive data

        Returns:
            String with sensitive data replaced
        """
        if not isinstance(text, str):
            text = str(text)

        sanitized = text
        for pattern, replacement in cls.SENSITIVE_PATTERNS:
            sanitized = pattern.sub(replacement, sanitized)
        return sanitized

    @classmethod
    def sanitize_dict(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively sanitize dictionary values."""
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            if any(sensitive in str(key).lower() for sensitive in cls.SENSITIVE_KEYS):
                sanitized[key] = REDACTED
            elif isinstance(value, dict):
                sanitized[key] = cls.sanitize_dict(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    cls.sanitize_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            elif isinstance(value, str):
                sanitized[key] = cls.sanitize_string(value)
            else:
                sanitized[key] = value
        return sanitized

    @classmethod
    def sanitize_log_record(cls, record: logging.LogRecord) -> logging.LogRecord:
        """Sanitize a log record before output."""
        record.msg = cls.sanitize_string(record.getMessage())
        record.args = ()
        return record


class SanitizingFilter(logging.Filter):
    """Logging filter that sanitizes sensitive information."""

    def filter(self, record: logging.LogRecord) -> bool:
        LogSanitizer.sanitize_log_record(record)
        return True


def setup_log_sanitization() -> None:
    """Attach the sanitizing filter to every handler of the root logger."""
    sanitizing_filter = SanitizingFilter()
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if not any(isinstance(f, SanitizingFilter) for f in handler.filters):
            handler.addFilter(sanitizing_filter)


def configure_logging(level: str = "INFO") -> None:
    """Configure process logging the same way for the CLI and the API."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    setup_log_sanitization()
