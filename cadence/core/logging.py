"""
Logging Setup
Configures the root logger and masks provider secrets in log records.
"""

import logging
import re

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SECRET_PATTERNS = [
    # Authorization: Bearer r8_xxx / Key fal-xxx / Token xxx
    re.compile(r"(?i)(authorization['\"]?\s*[:=]\s*['\"]?(?:bearer|key|token)\s+)([^\s'\",]+)"),
    # AccessKey: xxx (Bunny storage)
    re.compile(r"(?i)(accesskey['\"]?\s*[:=]\s*['\"]?)([^\s'\",]+)"),
    # ?key=xxx / &token=xxx
    re.compile(r"(?i)([?&](?:key|token|api_key)=)([^&\s]+)"),
]


def redact(text: str) -> str:
    """Mask secret-looking values in a string."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group(1)}***", text)
    return text


class RedactSecretsFilter(logging.Filter):
    """Rewrites log records so provider keys never reach handlers."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def configure_logging(level: str = "INFO"):
    """Install the standard format and the redaction filter on root handlers."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, RedactSecretsFilter) for f in handler.filters):
            handler.addFilter(RedactSecretsFilter())

    # httpx logs full request lines at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
