"""Credential-safe logging utilities for album-covers.

Provider clients log request URLs and error messages that can carry API
credentials. These helpers keep them out of log output:
- Credential masking for configuration dumps
- Credential and e-mail scrubbing in messages
- Formatter and handler setup (plain stream or Rich)
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

# Keys whose values are provider credentials
CREDENTIAL_KEYS = frozenset(
    {
        "discogs_token",
        "spotify_client_id",
        "spotify_client_secret",
        "access_token",
        "authorization",
    }
)

# Regex patterns for sensitive data
PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "discogs_token": re.compile(r"(Discogs\s+token=)[^\s,;\"']+", re.I),
    "bearer": re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.I),
    "basic": re.compile(r"(Basic\s+)[A-Za-z0-9+/=]{8,}"),
    "query_secret": re.compile(
        r"([?&](?:token|key|api_key|secret|client_secret|access_token)=)[^&\s\"']+", re.I
    ),
}

REDACTED = "[REDACTED]"


def mask_credential(value: str | None) -> str:
    """Show whether a credential is set without revealing it.

    Long values keep their last four characters so operators can tell two
    tokens apart: "***f3a9". Short values are masked entirely.
    """
    if not value:
        return "not set"
    if len(value) < 12:
        return "***"
    return f"***{value[-4:]}"


def _is_credential_key(key: str) -> bool:
    key = key.lower()
    return key in CREDENTIAL_KEYS or key.endswith(("_token", "_secret"))


def redact_credentials(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy a mapping with every credential value masked, descending into nested mappings."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if _is_credential_key(key) and (value is None or isinstance(value, str)):
            result[key] = mask_credential(value)
        elif isinstance(value, Mapping):
            result[key] = redact_credentials(value)
        else:
            result[key] = value
    return result


def sanitize_message(message: str) -> str:
    """Remove credentials and e-mail addresses from a log message."""
    result = PATTERNS["email"].sub("[EMAIL]", message)
    for name in ("discogs_token", "bearer", "basic", "query_secret"):
        result = PATTERNS[name].sub(rf"\g<1>{REDACTED}", result)
    return result


class SafeLogFormatter(logging.Formatter):
    """Formatter that scrubs the rendered message and any traceback text.

    The message is rendered before scrubbing, so a credential passed as a
    format argument (a request URL, an httpx exception) is caught as well.
    """

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers still see the unmodified record
        record = logging.makeLogRecord(record.__dict__)
        if isinstance(record.args, Mapping):
            record.args = redact_credentials(record.args)
        record.msg = sanitize_message(record.getMessage())
        record.args = None
        record.exc_text = None
        return super().format(record)

    def formatException(self, ei: Any) -> str:
        return sanitize_message(super().formatException(ei))


def configure_safe_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
) -> None:
    """Configure root logging with a plain stderr handler and credential-safe formatting.

    Used when stdout carries machine-readable output, and by library users
    who do not want Rich.
    """
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(SafeLogFormatter(fmt=format_string))
    _replace_root_handler(handler, level)


def _replace_root_handler(handler: logging.Handler, level: int) -> None:
    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        root_logger.removeHandler(existing)
    root_logger.setLevel(level)
    root_logger.addHandler(handler)


def configure_rich_logging(
    level: int = logging.INFO,
    show_time: bool = True,
    show_path: bool = False,
    console: Console | None = None,
) -> Console:
    """Configure root logging through Rich, writing to stderr.

    Replaces existing root handlers so repeated CLI invocations in one
    process (tests) do not stack handlers.

    Returns:
        The Console used for CLI output (stdout)
    """
    if console is None:
        console = Console()

    handler = RichHandler(
        console=Console(stderr=True),
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(SafeLogFormatter(fmt="%(message)s"))
    _replace_root_handler(handler, level)

    return console


## Tests


def test_mask_credential():
    assert mask_credential(None) == "not set"
    assert mask_credential("") == "not set"
    assert mask_credential("short") == "***"
    assert mask_credential("abcdefghijklf3a9") == "***f3a9"


def test_redact_credentials():
    data = {
        "discogs_token": "abcdefghijklmnop",
        "spotify_client_secret": None,
        "search_limit": 10,
        "headers": {"Authorization": "Discogs token=abcdefghijklmnop", "Accept": "json"},
    }

    redacted = redact_credentials(data)

    assert redacted["discogs_token"] == "***mnop"
    assert redacted["spotify_client_secret"] == "not set"
    assert redacted["search_limit"] == 10
    assert redacted["headers"]["Authorization"] == "***mnop"
    assert redacted["headers"]["Accept"] == "json"


def test_sanitize_message_scrubs_credentials():
    msg = (
        "GET https://api.example/search?q=x&token=abc123&limit=5 "
        "with Authorization: Discogs token=SECRET and Bearer eyJhbGciOi.x.y"
    )
    sanitized = sanitize_message(msg)

    assert "abc123" not in sanitized
    assert "SECRET" not in sanitized
    assert "eyJhbGciOi" not in sanitized
    assert "&limit=5" in sanitized
    assert "token=[REDACTED]" in sanitized


def test_sanitize_message_scrubs_email():
    sanitized = sanitize_message("User-Agent contact: ops@example.com")
    assert "[EMAIL]" in sanitized
    assert "ops@example.com" not in sanitized


def test_sanitize_message_keeps_mbids():
    msg = "Release 12345678-1234-1234-1234-123456789abc has no cover"
    assert sanitize_message(msg) == msg


def test_safe_log_formatter_sanitizes_args():
    formatter = SafeLogFormatter(fmt="%(message)s")
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="Calling %s",
        args=("https://api.example/x?key=topsecret",),
        exc_info=None,
    )

    formatted = formatter.format(record)
    assert "topsecret" not in formatted
    assert "key=[REDACTED]" in formatted


def test_safe_log_formatter_scrubs_mapping_args():
    formatter = SafeLogFormatter(fmt="%(message)s")
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="Provider settings: %(discogs_token)s",
        args=({"discogs_token": "abcdefghijklmnop"},),
        exc_info=None,
    )

    assert formatter.format(record) == "Provider settings: ***mnop"


def test_safe_log_formatter_scrubs_tracebacks():
    formatter = SafeLogFormatter(fmt="%(message)s")
    try:
        raise RuntimeError("GET https://api.example/x?token=topsecret failed")
    except RuntimeError:
        record = logging.LogRecord(
            name="test",
            level=logging.ERROR,
            pathname="",
            lineno=0,
            msg="Lookup failed",
            args=None,
            exc_info=sys.exc_info(),
        )

    formatted = formatter.format(record)
    assert "topsecret" not in formatted
    assert "Lookup failed" in formatted
