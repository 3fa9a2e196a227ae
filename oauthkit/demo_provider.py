"""Demo OAuth2 identity provider.

A small authorization-code server for local development and tests:
an HTML sign-in form, a token endpoint and a userinfo endpoint, all
backed by in-memory records that expire.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import contextlib
import html
import logging
import secrets
import time

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI, Form, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from .config import DemoProviderSettings


if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable


logger = logging.getLogger("oauthkit.demo")

FAKE_USER: dict[str, Any] = {
    "id": "demo_user_123",
    "email": "demo@example.com",
    "name": "Demo User",
    "avatar_url": "https://ui-avatars.com/api/?name=Demo+User&background=007AFF&color=fff",
}

_LOGIN_HTML = """<!DOCTYPE html>
<html>
<head><title>Demo OAuth Login</title>
<style>
  body {{ font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         min-height: 100vh; margin: 0; background: #f5f5f5; }}
  .card {{ background: white; padding: 2rem; border-radius: 8px;
          box-shadow: 0 2px 8px rgba(0,0,0,.1); max-width: 400px; width: 100%; }}
  h1 {{ margin-top: 0; }}
  button {{ width: 100%; padding: 12px; background: #007AFF; color: white; border: none;
           border-radius: 6px; font-size: 16px; cursor: pointer; margin-top: 1rem; }}
  button:hover {{ background: #0056CC; }}
  .info {{ font-size: 14px; color: #666; margin-top: 1rem; }}
</style></head>
<body><div class="card">
  <h1>Demo OAuth Provider</h1>
  <p>This is a mock OAuth provider for testing.</p>
  <form method="POST" action="{action}">
    <input type="hidden" name="code" value="{code}" />
    <input type="hidden" name="state" value="{state}" />
    <input type="hidden" name="redirect_uri" value="{redirect_uri}" />
    <button type="submit">Sign In with Demo Provider</button>
  </form>
  <div class="info">
    Client ID: {client_id}<br>
    Scope: {scope}
  </div>
</div></body></html>"""


def _random_suffix() -> str:
    return secrets.token_hex(8)


@dataclass
class AuthorizationCode:
    """An issued authorization code."""

    code: str
    redirect_uri: str
    client_id: str
    expires_at: float
    approved: bool = False


@dataclass
class IssuedToken:
    """An issued access token and its refresh token."""

    access_token: str
    refresh_token: str
    expires_at: float


class DemoProviderStore:
    """In-memory codes and tokens with expiry.

    Thread-safe via ``asyncio.Lock``. Expired entries are rejected on
    lookup and removed by ``sweep``.

    Parameters
    ----------
    code_ttl : float
        Lifetime of an authorization code in seconds.
    token_ttl : int
        Lifetime of an access token in seconds.
    clock : callable
        Returns the current time in seconds.
    """

    def __init__(
        self,
        code_ttl: float = 600.0,
        token_ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        self.clock = clock
        self._codes: dict[str, AuthorizationCode] = {}
        self._tokens: dict[str, IssuedToken] = {}
        self._lock = asyncio.Lock()

    async def issue_code(self, redirect_uri: str, client_id: str) -> AuthorizationCode:
        """Create a pending code for ``redirect_uri``."""
        now = self.clock()
        record = AuthorizationCode(
            code=f"demo_code_{int(now * 1000)}_{_random_suffix()}",
            redirect_uri=redirect_uri,
            client_id=client_id,
            expires_at=now + self.code_ttl,
        )
        async with self._lock:
            self._codes[record.code] = record
        return record

    async def approve_code(self, code: str) -> str | None:
        """Mark a code as approved by the user.

        Returns
        -------
        str or None
            An error description, or None when the code was approved.
        """
        async with self._lock:
            record = self._codes.get(code)
            if record is None:
                return "Invalid authorization code"
            if self.clock() > record.expires_at:
                del self._codes[code]
                return "Authorization code expired"
            record.approved = True
        return None

    async def redeem_code(self, code: str, redirect_uri: str = "") -> str | None:
        """Consume an approved code.

        Returns
        -------
        str or None
            An error description, or None when the code was redeemed.
        """
        async with self._lock:
            record = self._codes.get(code)
            if record is None:
                return "Unknown or already used authorization code"
            if not record.approved:
                return "Authorization code has not been approved"
            del self._codes[code]

        if self.clock() > record.expires_at:
            return "Authorization code expired"
        if redirect_uri and redirect_uri != record.redirect_uri:
            return "redirect_uri does not match the authorization request"
        return None

    async def issue_token(self) -> IssuedToken:
        """Create a new access/refresh token pair."""
        now = self.clock()
        stamp = int(now * 1000)
        token = IssuedToken(
            access_token=f"demo_access_token_{stamp}_{_random_suffix()}",
            refresh_token=f"demo_refresh_token_{stamp}_{_random_suffix()}",
            expires_at=now + self.token_ttl,
        )
        async with self._lock:
            self._tokens[token.access_token] = token
        return token

    async def verify_token(self, access_token: str) -> bool:
        """Check that an access token exists and has not expired."""
        async with self._lock:
            token = self._tokens.get(access_token)
            if token is None:
                return False
            if self.clock() > token.expires_at:
                del self._tokens[access_token]
                return False
        return True

    async def sweep(self) -> int:
        """Remove expired codes and tokens. Returns count removed."""
        now = self.clock()
        async with self._lock:
            codes = [k for k, v in self._codes.items() if now > v.expires_at]
            tokens = [k for k, v in self._tokens.items() if now > v.expires_at]
            for k in codes:
                del self._codes[k]
            for k in tokens:
                del self._tokens[k]
        return len(codes) + len(tokens)

    async def size(self) -> tuple[int, int]:
        """Return the number of stored codes and tokens."""
        async with self._lock:
            return len(self._codes), len(self._tokens)


async def _janitor(store: DemoProviderStore, interval: float) -> None:
    """Periodically sweep expired records until cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = await store.sweep()
        if removed:
            logger.debug("Swept %d expired demo records", removed)


def _oauth_error(error: str, description: str | None = None, status_code: int = 400) -> JSONResponse:
    content = {"error": error}
    if description:
        content["error_description"] = description
    return JSONResponse(status_code=status_code, content=content)


def create_demo_provider_router(store: DemoProviderStore, prefix: str = "/demo/provider") -> APIRouter:
    """Create the demo provider's routes.

    Parameters
    ----------
    store : DemoProviderStore
        Code and token records.
    prefix : str
        Path prefix of every endpoint.

    Returns
    -------
    APIRouter
        Router with authorize, token, userinfo and health routes.
    """
    prefix = prefix.rstrip("/")
    router = APIRouter(prefix=prefix, tags=["demo-provider"])

    @router.get("/authorize")
    async def authorize(
        client_id: str | None = None,
        redirect_uri: str | None = None,
        response_type: str | None = None,
        state: str | None = None,
        scope: str | None = None,
    ) -> Response:
        """Serve the sign-in form for an authorization request."""
        if not client_id or not redirect_uri or not response_type:
            return PlainTextResponse("Missing required parameters", status_code=400)
        if response_type != "code":
            return PlainTextResponse(
                "Only authorization code flow is supported", status_code=400
            )

        record = await store.issue_code(redirect_uri, client_id)
        logger.debug("Issued authorization code for %s", client_id)
        page = _LOGIN_HTML.format(
            action=html.escape(f"{prefix}/authorize", quote=True),
            code=html.escape(record.code, quote=True),
            state=html.escape(state or "", quote=True),
            redirect_uri=html.escape(redirect_uri, quote=True),
            client_id=html.escape(client_id),
            scope=html.escape(scope or "openid email profile"),
        )
        return HTMLResponse(page)

    @router.post("/authorize")
    async def authorize_submit(
        code: str | None = Form(None),
        state: str | None = Form(None),
        redirect_uri: str | None = Form(None),
    ) -> Response:
        """Approve the code and send the user back to the client."""
        if not code or not redirect_uri:
            return PlainTextResponse("Missing required parameters", status_code=400)

        problem = await store.approve_code(code)
        if problem:
            return PlainTextResponse(problem, status_code=400)

        separator = "&" if "?" in redirect_uri else "?"
        query = urlencode({"code": code, "state": state or ""})
        return RedirectResponse(url=f"{redirect_uri}{separator}{query}", status_code=302)

    @router.post("/token")
    async def token(
        code: str | None = Form(None),
        grant_type: str | None = Form(None),
        redirect_uri: str | None = Form(None),
        client_id: str | None = Form(None),  # pylint: disable=unused-argument
    ) -> JSONResponse:
        """Exchange an approved authorization code for tokens."""
        if grant_type != "authorization_code":
            return _oauth_error("unsupported_grant_type")
        if not code:
            return _oauth_error("invalid_request", "Missing code")

        problem = await store.redeem_code(code, redirect_uri or "")
        if problem:
            logger.info("Rejected token request: %s", problem)
            return _oauth_error("invalid_grant", problem)

        issued = await store.issue_token()
        return JSONResponse(
            content={
                "access_token": issued.access_token,
                "refresh_token": issued.refresh_token,
                "token_type": "Bearer",
                "expires_in": store.token_ttl,
            }
        )

    @router.get("/userinfo")
    async def userinfo(request: Request) -> JSONResponse:
        """Return the demo user for a valid bearer token."""
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            return _oauth_error(
                "invalid_token", "Missing or invalid Authorization header", status_code=401
            )
        if not await store.verify_token(auth_header[len("Bearer ") :]):
            return _oauth_error("invalid_token", "Token expired or invalid", status_code=401)
        return JSONResponse(content=FAKE_USER)

    @router.get("/health")
    async def health() -> dict[str, str]:
        """Health check."""
        return {"status": "ok"}

    @router.get("" if prefix else "/")
    async def index() -> dict[str, Any]:
        """Describe the available endpoints."""
        return {
            "name": "Demo OAuth 2.0 Provider",
            "endpoints": {
                "authorize": f"GET {prefix}/authorize",
                "token": f"POST {prefix}/token",
                "userinfo": f"GET {prefix}/userinfo",
                "health": f"GET {prefix}/health",
            },
            "description": "Mock OAuth 2.0 provider for testing oauthkit",
        }

    return router


def create_demo_provider_app(
    settings: DemoProviderSettings | None = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """Build the demo provider application.

    Parameters
    ----------
    settings : DemoProviderSettings, optional
        Prefix and lifetimes. Defaults to ``DemoProviderSettings()``.
    clock : callable
        Time source in seconds, injectable for tests.

    Returns
    -------
    FastAPI
        The application. Its store is available as ``app.state.store``.
    """
    settings = settings or DemoProviderSettings()
    store = DemoProviderStore(
        code_ttl=settings.code_ttl,
        token_ttl=settings.token_ttl,
        clock=clock,
    )

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        task = asyncio.create_task(_janitor(store, settings.sweep_interval))
        logger.info("Demo OAuth provider serving under %s", settings.prefix)
        try:
            yield
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    app = FastAPI(title="Demo OAuth 2.0 Provider", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.state.store = store
    app.include_router(create_demo_provider_router(store, settings.prefix))
    return app
