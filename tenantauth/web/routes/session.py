"""Origin-local session routes: trust-login, current session, logout."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse

from tenantauth.audit.logger import audit
from tenantauth.auth.tenant_resolver import normalize_host
from tenantauth.exceptions import (
    InvalidStateError,
    TransferAlreadyUsedError,
    TransferExpiredError,
)
from tenantauth.types import AuditAction
from tenantauth.web.dependencies import (
    SESSION_COOKIE,
    Services,
    client_ip,
    get_services,
    request_host,
    request_id,
    set_session_cookie,
)
from tenantauth.web.pages import error_page, popup_complete_page

router = APIRouter(tags=["session"])


@router.get("/auth/trust-login", response_model=None)
async def trust_login(
    request: Request,
    token: str = "",
    services: Services = Depends(get_services),
) -> RedirectResponse | HTMLResponse:
    """Redeem a transfer token and start a session on this origin."""
    services.rate_limiter.hit("trust_login", client_ip(request))
    host = normalize_host(request_host(request)) or ""
    try:
        redemption = await services.broker.redeem(token, host)
    except TransferExpiredError:
        return error_page("expired")
    except TransferAlreadyUsedError:
        return error_page("already_used")
    except InvalidStateError:
        return error_page("invalid_token")

    session_token = services.sessions.create_session(
        redemption.user_id, redemption.tenant_id, host, str(redemption.context)
    )
    response: RedirectResponse | HTMLResponse
    if redemption.popup:
        response = popup_complete_page(redemption.callback_path)
    else:
        response = RedirectResponse(url=redemption.callback_path, status_code=302)
    set_session_cookie(response, session_token, services.settings)

    await audit(
        services.settings,
        tenant_id=redemption.tenant_id,
        user_id=redemption.user_id,
        action=AuditAction.TRANSFER_REDEEMED,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return response


@router.get("/auth/session")
async def current_session(
    request: Request,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Return the signed-in identity for this origin."""
    host = normalize_host(request_host(request)) or ""
    session = services.sessions.validate_session(request.cookies.get(SESSION_COOKIE), host)
    if session is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await services.directory.find_user_by_id(session.user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    role = await services.directory.get_member_role(user.id, session.tenant_id)
    return {
        "user": {
            "id": user.id,
            "email": user.contact_email,
            "name": user.name,
            "image": user.image,
            "emailVerified": user.email_verified,
        },
        "tenantId": session.tenant_id,
        "context": session.context,
        "role": role,
    }


@router.post("/auth/logout")
async def logout(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> dict[str, str]:
    """Destroy the session for this origin."""
    session = services.sessions.destroy_session(request.cookies.get(SESSION_COOKIE))
    if session is not None:
        await audit(
            services.settings,
            tenant_id=session.tenant_id,
            user_id=session.user_id,
            action=AuditAction.LOGOUT,
            ip_address=client_ip(request),
            request_id=request_id(request),
        )
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"status": "ok"}


@router.get("/auth/error", response_class=HTMLResponse)
async def auth_error(reason: str = "") -> HTMLResponse:
    return error_page(reason, status_code=400)
