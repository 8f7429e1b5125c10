"""AuthProvider: turns a Credential into request headers.

Holds the bound credential (the one used when a request carries none) and
the OAuth2 token cache. The cache is injected, so a process can share one
cache across providers or keep them isolated.
"""

from __future__ import annotations

from typing import Optional

import httpx

from batch_tester.credentials import Credential
from batch_tester.credentials.oauth2 import OAuth2Credential
from batch_tester.errors import AuthError
from batch_tester.run_log import RunLog
from batch_tester.security import redact_url
from batch_tester.token_cache import TokenCache

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"}


class AuthProvider:
    def __init__(self, cache: Optional[TokenCache] = None, run_log: Optional[RunLog] = None):
        self.cache = cache if cache is not None else TokenCache()
        self.run_log = run_log
        self._credential: Optional[Credential] = None

    # ── binding ──

    def set_credential(self, credential: Credential) -> None:
        self._credential = credential

    def get_credential(self) -> Optional[Credential]:
        return self._credential

    def clear_credential(self) -> None:
        self._credential = None
        self.cache.clear()

    # ── resolution ──

    async def resolve_headers(
        self, credential: Optional[Credential], client: httpx.AsyncClient
    ) -> dict[str, str]:
        """Headers for ``credential``, or for the bound credential when None."""
        credential = credential or self._credential
        if credential is None:
            return {}
        return await credential.resolve(self, client)

    async def client_credentials_token(self, cred: OAuth2Credential, client: httpx.AsyncClient) -> str:
        async def fetch() -> tuple[str, Optional[float]]:
            return await self._request_token(cred, "client_credentials", client)

        return await self.cache.get_or_fetch(cred.cache_key, fetch)

    async def refresh_access_token(self, cred: OAuth2Credential, client: httpx.AsyncClient) -> str:
        """Refresh flow. Never cached: every call hits the token endpoint."""
        token, _ = await self._request_token(cred, "refresh_token", client)
        return token

    async def _request_token(
        self, cred: OAuth2Credential, grant: str, client: httpx.AsyncClient
    ) -> tuple[str, Optional[float]]:
        if not cred.token_url:
            raise AuthError(f"OAuth2: token URL is required for the {grant} flow")
        label = "fetch" if grant == "client_credentials" else "refresh"
        try:
            resp = await client.post(cred.token_url, data=cred.token_form(grant), headers=_FORM_HEADERS)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise AuthError(f"OAuth2: failed to {label} token: {type(exc).__name__}: {exc}") from exc
        if self.run_log:
            self.run_log.log("token_fetch", url=redact_url(cred.token_url), status=resp.status_code, detail=grant)
        if not resp.is_success:
            raise AuthError(f"OAuth2: failed to {label} token: HTTP {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError("OAuth2: token endpoint returned invalid JSON") from exc
        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthError("OAuth2: token response has no access_token")
        expires_in = payload.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            expires_in = None
        return str(token), expires_in
