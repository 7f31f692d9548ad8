# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Logging setup for the gateway with credential redaction.

Usage:
    # In the entry point
    from s3gate.logging import configure_logging
    configure_logging("info")

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Forwarding %s", path)

Secret access keys are registered with ``SecretFilter`` when the
configuration is loaded, so they are replaced with ``[REDACTED]`` even
if an exception message or a debug line happens to contain one.
"""

import logging
import re
from typing import ClassVar


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from log output.

    Records are never dropped, only rewritten.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        pattern = self._pattern
        if pattern is None:
            return True
        record.msg = pattern.sub("[REDACTED]", str(record.msg))
        if record.args:
            record.args = tuple(
                pattern.sub("[REDACTED]", arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        if record.exc_info and not record.exc_text:
            # Format now so the traceback text can be redacted as well
            record.exc_text = pattern.sub(
                "[REDACTED]",
                logging.Formatter().formatException(record.exc_info),
            )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register a secret to be redacted.  Empty strings are ignored."""
        if secret and secret not in cls._secrets:
            cls._secrets.add(secret)
            escaped = sorted((re.escape(s) for s in cls._secrets), key=len)
            cls._pattern = re.compile("|".join(reversed(escaped)))

    @classmethod
    def clear_secrets(cls) -> None:
        """Clear all registered secrets. Primarily for testing."""
        cls._secrets.clear()
        cls._pattern = None


def parse_level(level: int | str) -> int:
    """Convert ``"debug"``/``"INFO"``/``20`` style levels to an int.

    Raises:
        ValueError: If *level* is not a known level name.
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(
    level: int | str = logging.INFO,
    format_string: str = DEFAULT_FORMAT,
) -> None:
    """Install a single redacting stream handler on the root logger.

    Args:
        level: Level as an int or a name such as ``"info"``.
        format_string: Log record format.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))
    handler.addFilter(SecretFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(parse_level(level))
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)
    root_logger.addHandler(handler)

    # httpx logs every request at INFO; the gateway logs its own line
    logging.getLogger("httpx").setLevel(logging.WARNING)
