"""Security utilities: secret redaction, output-path checks, logging suppression.

No credential value (token, password, cookie, API key, client secret) may
reach the run log, console output or report files.
"""

from __future__ import annotations

import logging
import os
import re
import stat
from pathlib import Path
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

SENSITIVE_HEADERS: frozenset[str] = frozenset({
    "authorization", "proxy-authorization", "cookie", "set-cookie",
    "x-api-key", "x-auth-token", "x-access-token", "x-csrf-token",
})

_SENSITIVE_PARAMS = re.compile(r"(token|secret|password|passwd|api[_-]?key|apikey|session|sig)", re.I)

# "Bearer abc", "Basic abc", "access_token=abc", "password": "abc"
_INLINE_SECRETS = [
    re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]{4,}"),
    re.compile(r"(?i)\b((?:access|refresh)_token|client_secret|password|api[_-]?key)(\"?\s*[:=]\s*\"?)[^\s\"&,;]+"),
]

REDACTED = "[REDACTED]"


def suppress_credential_logging() -> None:
    """Prevent httpx/httpcore from logging raw credentials at DEBUG level."""
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v) for k, v in headers.items()}


def redact_url(url: str) -> str:
    """Mask userinfo and secret-looking query parameters."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc
    if "@" in netloc:
        netloc = f"{REDACTED}@{netloc.rsplit('@', 1)[1]}"
    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        query = urlencode([(k, REDACTED if _SENSITIVE_PARAMS.search(k) else v) for k, v in pairs], safe="[]")
    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def redact_text(text: str) -> str:
    """Mask inline credentials in free-form text such as error messages."""
    text = _INLINE_SECRETS[0].sub(lambda m: f"{m.group(1)} {REDACTED}", text)
    return _INLINE_SECRETS[1].sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)


def is_symlink_or_hardlink_attack(path: Path) -> bool:
    """Detect symlink/hardlink attacks on output paths."""
    if path.is_symlink():
        return True
    if path.exists():
        try:
            if path.resolve(strict=True) != path.absolute():
                return True
        except OSError:
            return True
    return False


def check_output_permissions(path: Path, force: bool = False) -> bool:
    """Return True if safe to write. Refuses symlinks. Refuses world-readable unless forced."""
    if is_symlink_or_hardlink_attack(path):
        return False
    if not path.exists():
        parent = path.parent
        if parent.exists():
            mode = os.stat(parent).st_mode
            if mode & stat.S_IROTH and not force:
                return False
        return True
    mode = os.stat(path).st_mode
    if mode & stat.S_IROTH:
        return force
    return True
