"""Bearer token credential: Authorization: <prefix> <token>."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional

import httpx

from batch_tester.credentials import Credential, _opt_str


@dataclass(frozen=True)
class BearerCredential(Credential):
    kind: ClassVar[str] = "bearer"
    required_fields: ClassVar[tuple[str, ...]] = ("token",)

    token: str = field(default="", repr=False)
    prefix: Optional[str] = None

    @classmethod
    def parse(cls, data: dict) -> "BearerCredential":
        return cls(token=str(data.get("token") or ""), prefix=_opt_str(data, "prefix"))

    def to_dict(self) -> dict:
        out = {"type": self.kind, "token": self.token}
        if self.prefix is not None:
            out["prefix"] = self.prefix
        return out

    async def headers(self, auth, client: httpx.AsyncClient) -> dict[str, str]:
        return {"Authorization": f"{self.prefix or 'Bearer'} {self.token}"}
