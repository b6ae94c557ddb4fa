"""
OAuth client capability: silent refresh, authorization start, authorization completion.

The engine only depends on the OAuthClient protocol. HttpOAuthClient is the
default implementation against an Auth0-style provider (/authorize, /oauth/token)
using the authorization-code + PKCE flow with a loopback redirect.
"""
import logging
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import parse_qs, urlparse

import httpx

from token_engine.errors import FaultKind, ProviderError
from token_engine.pkce import build_authorize_url, generate_nonce, generate_pkce, generate_state
from token_engine.token_store import CacheKey

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationOptions:
    # Skip silent renewal and make the provider show its login page even with an SSO session
    force_interactive: bool = False


@dataclass
class AuthorizationStart:
    start_url: str
    state: str
    redirect_uri: str
    nonce: str = field(default="", repr=False)
    code_verifier: str = field(default="", repr=False)


@dataclass
class TokenResponse:
    access_token: str = field(repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expires_in: int = 0
    refresh_expires_in: int = 0
    scope: str = ""
    id_token: str | None = field(default=None, repr=False)

    @classmethod
    def from_json(cls, data: dict) -> "TokenResponse":
        access_token = data.get("access_token") or ""
        if not access_token:
            raise ProviderError("Token response did not contain an access_token")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_in=int(data.get("expires_in") or 0),
            refresh_expires_in=int(data.get("refresh_expires_in") or 0),
            scope=data.get("scope", ""),
            id_token=data.get("id_token") or None,
        )


class OAuthClient(Protocol):
    async def refresh(self, refresh_token: str, key: CacheKey) -> TokenResponse: ...

    async def begin_authorization(self, audience: str, options: AuthorizationOptions) -> AuthorizationStart: ...

    async def end_authorization(self, start: AuthorizationStart, redirect_url: str, key: CacheKey) -> TokenResponse: ...


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    return values[0] if values else None


class HttpOAuthClient:
    """Talks to the provider's token endpoint with httpx.AsyncClient."""

    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        scope: str,
        redirect_uri: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.scope = scope
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    @property
    def token_url(self) -> str:
        return f"{self.issuer}/oauth/token"

    async def _post_token(self, data: dict) -> TokenResponse:
        grant_type = data.get("grant_type")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(
                    self.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Token request failed: {e}") from e

        if r.status_code != 200:
            err = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
            error = err.get("error")
            err_desc = err.get("error_description", error or r.text) or "Token request failed"
            logger.warning("Token endpoint rejected %s grant (%s): %s", grant_type, r.status_code, error)
            raise ProviderError(str(err_desc), error=error, status_code=r.status_code)

        try:
            payload = r.json()
        except ValueError as e:
            raise ProviderError(f"Invalid token response: {e}") from e
        return TokenResponse.from_json(payload)

    async def refresh(self, refresh_token: str, key: CacheKey) -> TokenResponse:
        """Exchange refresh_token for a new access token (and rotated refresh token if issued)."""
        return await self._post_token(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": key.client_id,
                "scope": key.scope,
                "audience": key.audience,
            }
        )

    async def begin_authorization(self, audience: str, options: AuthorizationOptions) -> AuthorizationStart:
        state = generate_state()
        nonce = generate_nonce()
        code_verifier, code_challenge = generate_pkce()
        url = build_authorize_url(
            issuer=self.issuer,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scope=self.scope,
            audience=audience,
            state=state,
            code_challenge=code_challenge,
            nonce=nonce,
            force_login=options.force_interactive,
        )
        return AuthorizationStart(
            start_url=url,
            state=state,
            redirect_uri=self.redirect_uri,
            nonce=nonce,
            code_verifier=code_verifier,
        )

    async def end_authorization(self, start: AuthorizationStart, redirect_url: str, key: CacheKey) -> TokenResponse:
        """
        Validate the redirect (state, error, code) then exchange the code for tokens.
        access_denied means the user declined, which ends the attempt like a cancel.
        """
        params = parse_qs(urlparse(redirect_url).query, keep_blank_values=False)
        error = _first(params, "error")
        if error:
            kind = FaultKind.CANCELLED if error == "access_denied" else FaultKind.TRANSIENT
            raise ProviderError(_first(params, "error_description") or error, kind=kind, error=error)
        if _first(params, "state") != start.state:
            raise ProviderError("Invalid or missing state on authorization redirect", error="invalid_state")
        code = _first(params, "code")
        if not code:
            raise ProviderError("Missing code on authorization redirect", error="invalid_request")

        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": start.redirect_uri,
                "client_id": key.client_id,
                "code_verifier": start.code_verifier,
            }
        )
