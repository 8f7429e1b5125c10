"""Session credential: a cookie string plus optional extra headers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

import httpx

from batch_tester.credentials import Credential, merge_headers
from batch_tester.errors import ConfigError


def parse_cookies(cookie_string: str) -> list[tuple[str, str]]:
    """Split "A=1; B=x=y; C=" into [("A", "1"), ("B", "x=y"), ("C", "")], dropping nameless pairs."""
    cookies: list[tuple[str, str]] = []
    for pair in cookie_string.split(";"):
        pair = pair.strip()
        if not pair:
            continue
        name, _, value = pair.partition("=")
        name, value = name.strip(), value.strip()
        if name:
            cookies.append((name, value))
    return cookies


def cookies_to_string(cookies: list[tuple[str, str]]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies)


@dataclass(frozen=True)
class SessionCredential(Credential):
    kind: ClassVar[str] = "session"
    required_fields: ClassVar[tuple[str, ...]] = ("cookie_string",)

    cookie_string: str = field(default="", repr=False)
    extra_headers: dict[str, str] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def parse(cls, data: dict) -> "SessionCredential":
        extra = data.get("headers") or {}
        if not isinstance(extra, dict):
            raise ConfigError("session.headers must be an object")
        return cls(
            cookie_string=cookies_to_string(parse_cookies(str(data.get("cookies") or ""))),
            extra_headers={str(k): str(v) for k, v in extra.items()},
        )

    def to_dict(self) -> dict:
        return {"type": self.kind, "cookies": self.cookie_string, "headers": dict(self.extra_headers)}

    async def headers(self, auth, client: httpx.AsyncClient) -> dict[str, str]:
        return merge_headers({"Cookie": self.cookie_string}, self.extra_headers)
