"""OAuth routes: provider initiation and the shared callback."""

from __future__ import annotations

from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from tenantauth.audit.logger import audit
from tenantauth.auth.tenant_resolver import normalize_host
from tenantauth.exceptions import InvalidStateError
from tenantauth.types import AuditAction, AuthContext
from tenantauth.web.dependencies import (
    STATE_COOKIE,
    Services,
    client_ip,
    get_services,
    request_host,
    request_id,
    set_session_cookie,
)
from tenantauth.web.pages import popup_complete_page

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["oauth"])


# ---------------------------------------------------------------------------
# Callback (declared first so "callback" is never taken as a provider name)
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/callback", response_model=None)
async def oauth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    services: Services = Depends(get_services),
) -> RedirectResponse | HTMLResponse:
    """Finish a provider sign-in and hand the session to the return domain."""
    host = request_host(request)
    services.rate_limiter.hit("oauth_callback", client_ip(request))
    try:
        result = await services.oauth.callback(
            code,
            state,
            host,
            state_cookie=request.cookies.get(STATE_COOKIE),
            provider_error=error,
        )
    except InvalidStateError:
        response = RedirectResponse(
            url="/auth/error?" + urlencode({"reason": "invalid_state"}), status_code=302
        )
        response.delete_cookie(STATE_COOKIE, path="/")
        return response

    response: RedirectResponse | HTMLResponse
    if result.establish_session and result.user_id and result.tenant_id:
        token = services.sessions.create_session(
            result.user_id,
            result.tenant_id,
            normalize_host(host) or host,
            str(result.context or AuthContext.PORTAL),
        )
        if result.popup:
            response = popup_complete_page(result.redirect_url)
        else:
            response = RedirectResponse(url=result.redirect_url, status_code=302)
        set_session_cookie(response, token, services.settings)
    else:
        response = RedirectResponse(url=result.redirect_url, status_code=302)
    response.delete_cookie(STATE_COOKIE, path="/")

    if result.user_id and result.tenant_id:
        await audit(
            services.settings,
            tenant_id=result.tenant_id,
            user_id=result.user_id,
            action=AuditAction.OAUTH_LOGIN,
            ip_address=client_ip(request),
            request_id=request_id(request),
        )
    return response


# ---------------------------------------------------------------------------
# Initiation
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/{provider}")
async def oauth_initiate(
    request: Request,
    provider: str,
    tenant: str | None = None,
    context: AuthContext = AuthContext.PORTAL,
    return_domain: str | None = Query(default=None, alias="returnDomain"),
    callback_path: str = Query(default="/", alias="callbackPath"),
    popup: bool = False,
    invitation_id: str | None = Query(default=None, alias="invitationId"),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """Redirect the browser to the provider's consent screen."""
    host = request_host(request)
    services.rate_limiter.hit("oauth_initiate", client_ip(request))
    result = await services.oauth.initiate(
        provider,
        context=context,
        return_domain=return_domain or host,
        callback_path=callback_path,
        tenant_slug=tenant,
        host=host,
        popup=popup,
        invitation_id=invitation_id,
    )
    response = RedirectResponse(url=result.url, status_code=302)
    response.set_cookie(
        key=STATE_COOKIE,
        value=result.nonce,
        httponly=True,
        secure=services.settings.secure_cookies,
        samesite="lax",
        path="/",
        max_age=services.settings.oauth_state_max_age,
    )
    return response

