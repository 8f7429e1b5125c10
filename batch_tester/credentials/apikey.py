"""API key credential sent in a configurable header (default X-API-Key)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional

import httpx

from batch_tester.credentials import Credential, _opt_str

DEFAULT_HEADER = "X-API-Key"


@dataclass(frozen=True)
class ApiKeyCredential(Credential):
    kind: ClassVar[str] = "apikey"
    required_fields: ClassVar[tuple[str, ...]] = ("key",)

    key: str = field(default="", repr=False)
    header_name: Optional[str] = None
    prefix: Optional[str] = None

    @classmethod
    def parse(cls, data: dict) -> "ApiKeyCredential":
        return cls(
            key=str(data.get("key") or ""),
            header_name=_opt_str(data, "header"),
            prefix=_opt_str(data, "prefix"),
        )

    def to_dict(self) -> dict:
        out = {"type": self.kind, "key": self.key}
        if self.header_name is not None:
            out["header"] = self.header_name
        if self.prefix is not None:
            out["prefix"] = self.prefix
        return out

    async def headers(self, auth, client: httpx.AsyncClient) -> dict[str, str]:
        value = f"{self.prefix} {self.key}" if self.prefix else self.key
        return {self.header_name or DEFAULT_HEADER: value}
