"""HTTP Basic credential."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import ClassVar

import httpx

from batch_tester.credentials import Credential


@dataclass(frozen=True)
class BasicCredential(Credential):
    kind: ClassVar[str] = "basic"
    required_fields: ClassVar[tuple[str, ...]] = ("username", "password")

    username: str = ""
    password: str = field(default="", repr=False)

    @classmethod
    def parse(cls, data: dict) -> "BasicCredential":
        return cls(username=str(data.get("username") or ""), password=str(data.get("password") or ""))

    def to_dict(self) -> dict:
        return {"type": self.kind, "username": self.username, "password": self.password}

    async def headers(self, auth, client: httpx.AsyncClient) -> dict[str, str]:
        raw = f"{self.username}:{self.password}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
