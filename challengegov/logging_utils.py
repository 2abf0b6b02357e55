import logging
import re
from typing import Any

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def sanitize_log_value(value: Any, max_length: int = 512) -> str:
    """
    Make a user supplied value safe for a single log line.

    Emails, challenge titles and remote addresses all reach log messages.
    CR/LF are escaped, other control characters become ``?`` and long values
    are cut at ``max_length``.
    """
    if value is None:
        return "<none>"

    text = str(value)
    text = text.replace("\r", "\\r").replace("\n", "\\n")
    text = _CONTROL_CHAR_PATTERN.sub("?", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"

    return text


class LogSanitizerFilter(logging.Filter):
    """Sanitizes the message (or its arguments) of every record it sees."""

    def __init__(self, max_length: int = 512):
        super().__init__("challengegov-log-sanitizer")
        self.max_length = max_length

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.args:
            record.msg = sanitize_log_value(record.msg, self.max_length)
            return True

        if isinstance(record.args, dict):
            record.args = {
                key: sanitize_log_value(val, self.max_length)
                for key, val in record.args.items()
            }
        else:
            record.args = tuple(
                sanitize_log_value(arg, self.max_length) for arg in record.args
            )
        return True


def install_log_sanitizer(
    target_logger: logging.Logger | None = None, max_length: int = 512
) -> None:
    """
    Attach the sanitizer to a logger (root by default) and its current handlers.

    Handler filters also see records propagated from child loggers. Repeat
    calls are ignored.
    """
    logger = target_logger or logging.getLogger()
    for existing in logger.filters:
        if isinstance(existing, LogSanitizerFilter):
            return
    sanitizer = LogSanitizerFilter(max_length)
    logger.addFilter(sanitizer)
    for handler in logger.handlers:
        handler.addFilter(sanitizer)
