"""FastAPI routes for the OAuth2 sign-in flow.

Provides sign-in, web and native callback, session and sign-out
endpoints on top of an ``OAuthManager``, plus ``create_app`` which wires
the whole stack from configuration.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import contextlib
import html
import logging

from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from .config import get_settings
from .exceptions import SignInError
from .flow import OAuthManager
from .log import configure as configure_logging
from .providers import create_provider_from_settings
from .storage import create_storage
from .types import NATIVE_CALLBACK_PATH, WEB_CALLBACK_PATH, AuthFailure, FlowConfig


if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .config import OAuthKitSettings
    from .providers import OAuthProvider
    from .storage import Storage


logger = logging.getLogger("oauthkit.routes")

_PAGE_STYLE = """<style>
  body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
         display: flex; align-items: center; justify-content: center;
         height: 100vh; margin: 0; background: #f0f2f5; color: #1a1a2e; }
  .card { text-align: center; padding: 2rem 3rem; background: white;
          border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08); }
  h1 { font-size: 1.5rem; margin-bottom: 0.5rem; }
  h1.error { color: #cc0000; }
  p { color: #666; }
</style>"""

# Query parameter set by the bridge page once the fragment is merged.
MERGED_MARKER = "_merged"

# Fragments never reach the server. The first hit merges the fragment into
# the query and reloads with the marker; the marked request is completed.
_BRIDGE_HTML = """<!DOCTYPE html>
<html>
<head><title>Completing Sign-In</title>
{style}
<script>
  (function () {{
    var search = window.location.search.substring(1);
    var hash = window.location.hash.substring(1);
    var merged = /(^|&){marker}=1(&|$)/.test(search);
    if (!merged && (search || hash)) {{
      var parts = [search, hash, "{marker}=1"].filter(function (p) {{ return p; }});
      window.location.replace(window.location.pathname + "?" + parts.join("&"));
    }} else {{
      document.addEventListener("DOMContentLoaded", function () {{
        document.getElementById("status").textContent = "{done}";
      }});
    }}
  }})();
</script></head>
<body><div class="card">
  <h1 id="status">Completing sign-in&hellip;</h1>
  <p>{hint}</p>
</div></body></html>"""

_ERROR_HTML = """<!DOCTYPE html>
<html>
<head><title>Authentication Error</title>
{style}</head>
<body><div class="card">
  <h1 class="error">&#x274C; Authentication Failed</h1>
  <p>{error}</p>
  <p><a href="{retry}">Try again</a></p>
</div></body></html>"""

_SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "Referrer-Policy": "no-referrer",
    "X-Content-Type-Options": "nosniff",
}


def render_bridge_page(native: bool = False) -> str:
    """Render the page that merges a callback's fragment into its query."""
    if native:
        done = "Returning to the app"
        hint = "If the app does not open, switch back to it manually."
    else:
        done = "Authentication Complete"
        hint = "You can continue in the application."
    return _BRIDGE_HTML.format(style=_PAGE_STYLE, marker=MERGED_MARKER, done=done, hint=hint)


def render_error_page(message: str, retry_url: str = "/") -> str:
    """Render the web callback error page."""
    return _ERROR_HTML.format(
        style=_PAGE_STYLE,
        error=html.escape(message),
        retry=html.escape(retry_url, quote=True),
    )


def _merged_params(request: Request) -> dict[str, str] | None:
    """Callback parameters once the bridge page has merged the fragment.

    Returns None for a first hit, which still has to go through the
    bridge page. The marker itself is dropped.
    """
    params = dict(request.query_params)
    if params.pop(MERGED_MARKER, None) is None:
        return None
    return params


def create_oauth_router(manager: OAuthManager, default_provider: str = "demo") -> APIRouter:
    """Create a FastAPI router exposing the sign-in flow.

    Parameters
    ----------
    manager : OAuthManager
        The flow orchestrator shared by all routes.
    default_provider : str
        Upstream provider name used when ``/auth/signin`` has no
        ``provider`` query parameter.

    Returns
    -------
    APIRouter
        Router with ``/auth/*`` and ``/native-callback`` routes.
    """
    router = APIRouter(tags=["authentication"])

    @router.get("/auth/signin")
    async def auth_signin(request: Request, provider: str | None = None) -> Response:
        """Start sign-in and redirect to the dispatch URL."""
        try:
            sign_in = await manager.sign_in(
                provider or default_provider,
                user_agent=request.headers.get("user-agent"),
            )
        except SignInError as exc:
            logger.warning("Sign-in could not start: %s", exc.message)
            return JSONResponse(
                status_code=502,
                content={"error": "sign_in_failed", "error_description": exc.message},
            )
        return RedirectResponse(url=sign_in.dispatch_url, status_code=302)

    @router.get(WEB_CALLBACK_PATH)
    async def auth_callback(request: Request) -> Response:
        """Complete a browser sign-in."""
        params = _merged_params(request)
        if not params:
            return HTMLResponse(render_bridge_page(native=False), headers=_SECURITY_HEADERS)

        result = await manager.resolve_callback(params, is_native=False)
        if isinstance(result.outcome, AuthFailure):
            return HTMLResponse(
                render_error_page(result.outcome.message, retry_url="/auth/signin"),
                status_code=400,
                headers=_SECURITY_HEADERS,
            )
        return RedirectResponse(url=result.destination, status_code=302)

    @router.get(NATIVE_CALLBACK_PATH)
    async def native_callback(request: Request) -> Response:
        """Complete a native-shell sign-in and hand back a deeplink."""
        params = _merged_params(request)
        if not params:
            return HTMLResponse(render_bridge_page(native=True), headers=_SECURITY_HEADERS)

        destination = await manager.handle_callback(params, is_native=True)
        return RedirectResponse(url=destination, status_code=302, headers=_SECURITY_HEADERS)

    @router.get("/auth/session")
    async def auth_session() -> JSONResponse:
        """Return the current session, if any."""
        session = await manager.get_session()
        if session is None:
            return JSONResponse(content={"authenticated": False})
        return JSONResponse(content={"authenticated": True, **session.to_dict()})

    @router.post("/auth/signout")
    async def auth_signout() -> JSONResponse:
        """Sign out the current user."""
        await manager.sign_out()
        return JSONResponse(content={"success": True})

    return router


def create_app(
    settings: OAuthKitSettings | None = None,
    provider: OAuthProvider | None = None,
    storage: Storage | None = None,
) -> FastAPI:
    """Build a FastAPI app serving the sign-in flow.

    Parameters
    ----------
    settings : OAuthKitSettings, optional
        Configuration. Defaults to ``get_settings()``.
    provider : OAuthProvider, optional
        Identity backend. Built from ``settings.provider`` when omitted.
    storage : Storage, optional
        Storage capability. Built from ``settings.flow.storage_backend``
        when omitted.

    Returns
    -------
    FastAPI
        The application. The manager is available as
        ``app.state.oauth_manager``.
    """
    settings = settings or get_settings()
    configure_logging(settings.log.level, settings.log.format)

    if storage is None:
        storage = create_storage(settings.flow.storage_backend)
    if provider is None:
        provider = create_provider_from_settings(settings.provider, storage)

    config = FlowConfig(
        app_url=settings.flow.app_url,
        deeplink_scheme=settings.flow.deeplink_scheme,
        provider=provider,
        native_marker=settings.flow.native_marker,
        verify_state=settings.flow.verify_state,
        state_max_age=settings.flow.state_max_age,
        max_pending_states=settings.flow.max_pending_states,
    )
    manager = OAuthManager(config, storage=storage)

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info("Serving sign-in flow for %s", config.app_url)
        yield
        await provider.close()

    app = FastAPI(title="oauthkit", lifespan=lifespan)
    app.state.oauth_manager = manager
    app.include_router(create_oauth_router(manager))
    return app
