"""Ownership check served on every host that belongs to a workspace."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from tenantauth.auth.domains import VERIFICATION_BODY, VERIFICATION_PATH
from tenantauth.web.dependencies import Services, get_services, request_host

router = APIRouter(tags=["domains"])


@router.get(VERIFICATION_PATH, response_class=PlainTextResponse)
async def domain_verification(
    request: Request,
    services: Services = Depends(get_services),
) -> str:
    # Unverified hosts must answer too; that is what verification looks for
    await services.resolver.resolve(host=request_host(request), allow_unverified=True)
    return VERIFICATION_BODY
