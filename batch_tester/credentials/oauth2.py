"""OAuth2 credential: static access token, client-credentials or refresh flow.

Token acquisition is delegated to the AuthProvider, which owns the token
cache and the single-flight bookkeeping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar, Literal, Optional

import httpx

from batch_tester.credentials import Credential, _opt_str
from batch_tester.errors import AuthError, ConfigError

if TYPE_CHECKING:
    from batch_tester.auth import AuthProvider

GrantType = Literal["client_credentials", "authorization_code", "refresh_token"]

GRANT_TYPES: frozenset[str] = frozenset(GrantType.__args__)  # type: ignore[attr-defined]


@dataclass(frozen=True)
class OAuth2Credential(Credential):
    kind: ClassVar[str] = "oauth2"
    required_fields: ClassVar[tuple[str, ...]] = ("client_id",)

    client_id: str = ""
    client_secret: Optional[str] = field(default=None, repr=False)
    access_token: Optional[str] = field(default=None, repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    token_url: Optional[str] = None
    scope: Optional[str] = None
    grant_type: Optional[GrantType] = None

    @property
    def cache_key(self) -> tuple[str, str]:
        return (self.client_id, self.token_url or "")

    @classmethod
    def parse(cls, data: dict) -> "OAuth2Credential":
        grant = data.get("grantType")
        if grant is not None and grant not in GRANT_TYPES:
            raise ConfigError(f"oauth2: unsupported grantType {grant!r}")
        return cls(
            client_id=str(data.get("clientId") or ""),
            client_secret=_opt_str(data, "clientSecret"),
            access_token=_opt_str(data, "accessToken"),
            refresh_token=_opt_str(data, "refreshToken"),
            token_url=_opt_str(data, "tokenUrl"),
            scope=_opt_str(data, "scope"),
            grant_type=grant,
        )

    def to_dict(self) -> dict:
        out: dict = {"type": self.kind, "clientId": self.client_id}
        for key, value in (
            ("clientSecret", self.client_secret),
            ("accessToken", self.access_token),
            ("refreshToken", self.refresh_token),
            ("tokenUrl", self.token_url),
            ("scope", self.scope),
            ("grantType", self.grant_type),
        ):
            if value is not None:
                out[key] = value
        return out

    def check_fields(self) -> None:
        # A pre-issued access token is enough on its own
        if self.access_token:
            return
        super().check_fields()

    def token_form(self, grant: str) -> dict[str, str]:
        """Form body for a token endpoint request."""
        form = {"grant_type": grant}
        if grant == "refresh_token":
            form["refresh_token"] = self.refresh_token or ""
        form["client_id"] = self.client_id
        if self.client_secret:
            form["client_secret"] = self.client_secret
        if self.scope:
            form["scope"] = self.scope
        return form

    async def headers(self, auth: "AuthProvider", client: httpx.AsyncClient) -> dict[str, str]:
        token = self.access_token
        if not token:
            if self.grant_type == "client_credentials" and self.token_url:
                token = await auth.client_credentials_token(self, client)
            elif self.grant_type == "refresh_token" and self.refresh_token and self.token_url:
                token = await auth.refresh_access_token(self, client)
            else:
                raise AuthError("OAuth2: no token available and cannot fetch one")
        return {"Authorization": f"Bearer {token}"}
