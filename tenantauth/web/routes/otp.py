"""One-time code routes: tenant sign-in and the root-domain workspace finder."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from tenantauth.audit.logger import audit
from tenantauth.auth.oauth import build_url, validate_callback_path
from tenantauth.auth.tenant_resolver import normalize_host
from tenantauth.models.database import Tenant
from tenantauth.types import AuditAction, AuthContext, VerifyAction
from tenantauth.web.dependencies import (
    Services,
    client_ip,
    get_services,
    request_host,
    request_id,
    set_session_cookie,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["otp"])


class SendCodeRequest(BaseModel):
    email: str
    tenant: str | None = None  # slug, when called from the shared auth origin


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    code: str
    tenant: str | None = None
    name: str | None = None
    invitation_id: str | None = Field(default=None, alias="invitationId")
    context: AuthContext = AuthContext.PORTAL
    callback_path: str | None = Field(default=None, alias="callbackPath")


class FinderVerifyRequest(BaseModel):
    email: str
    code: str


async def _tenant_for(request: Request, services: Services, slug: str | None) -> Tenant:
    return await services.resolver.resolve(host=request_host(request), slug=slug)


# ---------------------------------------------------------------------------
# Tenant sign-in
# ---------------------------------------------------------------------------


@router.post("/auth/otp/send")
async def send_code(
    body: SendCodeRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> dict[str, bool]:
    """Email a sign-in code. Succeeds whether or not delivery worked."""
    tenant = await _tenant_for(request, services, body.tenant)
    await services.otp.send(tenant, body.email, client_ip(request))
    await audit(
        services.settings,
        tenant_id=tenant.id,
        user_id="",
        action=AuditAction.OTP_SENT,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return {"success": True}


@router.post("/auth/otp/verify")
async def verify_code(
    body: VerifyCodeRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Check a code; log in, ask for a name, or sign up."""
    tenant = await _tenant_for(request, services, body.tenant)
    callback_path = validate_callback_path(body.callback_path)
    outcome = await services.otp.verify(
        tenant,
        body.email,
        body.code,
        client_ip(request),
        name=body.name,
        invitation_id=body.invitation_id,
        context=body.context,
    )
    result: dict[str, Any] = {"success": True, "action": outcome.action}
    if outcome.action == VerifyAction.NEEDS_SIGNUP or outcome.user_id is None:
        return result

    host = normalize_host(request_host(request))
    if host and await services.resolver.owns_domain(tenant, host):
        token = services.sessions.create_session(
            outcome.user_id, tenant.id, host, str(body.context)
        )
        set_session_cookie(response, token, services.settings)
        result["redirectUrl"] = callback_path
    else:
        # Verified on the shared origin: hand the session to the tenant's primary domain
        primary = await services.resolver.primary_domain(tenant)
        transfer = await services.broker.issue(
            outcome.user_id, tenant.id, primary.domain, callback_path, body.context
        )
        result["redirectUrl"] = build_url(
            services.settings.public_scheme, primary.domain, "/auth/trust-login", token=transfer
        )

    action = AuditAction.SIGNUP if outcome.action == VerifyAction.SIGNUP else AuditAction.LOGIN
    await audit(
        services.settings,
        tenant_id=tenant.id,
        user_id=outcome.user_id,
        action=action,
        details={"method": "otp", "context": str(body.context)},
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    logger.info("otp_verified", tenant_id=tenant.id, user_id=outcome.user_id, action=action)
    return result


# ---------------------------------------------------------------------------
# Workspace finder (shared origin)
# ---------------------------------------------------------------------------


@router.post("/auth/workspaces/send")
async def send_finder_code(
    body: SendCodeRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> dict[str, bool]:
    await services.otp.send_finder(body.email, client_ip(request))
    return {"success": True}


@router.post("/auth/workspaces/verify")
async def verify_finder_code(
    body: FinderVerifyRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """List the workspaces an email address belongs to."""
    workspaces = await services.otp.verify_finder(body.email, body.code, client_ip(request))
    return {
        "success": True,
        "workspaces": [w.model_dump() for w in workspaces],
    }
