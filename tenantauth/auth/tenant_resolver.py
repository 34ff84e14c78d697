"""Map a request host or explicit workspace slug to a tenant."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog

from tenantauth.exceptions import NotFoundError

if TYPE_CHECKING:
    from tenantauth.models.database import Domain, Tenant
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)

_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_HOST_RE = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*(?::\d{{1,5}})?$")
_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


def normalize_host(host: str | None) -> str | None:
    """Lowercase a host (port kept) and return None when it is malformed."""
    if not host:
        return None
    candidate = host.strip().lower()
    if not _HOST_RE.match(candidate):
        return None
    return candidate


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug))


class TenantResolver:
    """Resolves tenants by slug or by exact domain match.

    An explicit slug wins over the host. Custom domains that have not been
    verified do not resolve unless ``allow_unverified`` is set, which only
    the domain verification flow does.
    """

    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    async def resolve(
        self,
        host: str | None = None,
        slug: str | None = None,
        allow_unverified: bool = False,
    ) -> Tenant:
        if slug:
            normalized_slug = slug.strip().lower()
            tenant = None
            if is_valid_slug(normalized_slug):
                tenant = await self._directory.find_tenant_by_slug(normalized_slug)
            if tenant is None:
                logger.info("tenant_not_found", slug=slug)
                raise NotFoundError("Workspace not found")
            return tenant

        normalized = normalize_host(host)
        if normalized is None:
            raise NotFoundError("Workspace not found")

        found = await self._directory.find_tenant_by_domain(normalized)
        if found is None:
            logger.info("tenant_not_found", host=normalized)
            raise NotFoundError("Workspace not found")
        tenant, domain = found
        if not domain.verified and not allow_unverified:
            logger.info("tenant_domain_unverified", host=normalized, tenant_id=tenant.id)
            raise NotFoundError("Workspace not found")
        return tenant

    async def owns_domain(self, tenant: Tenant, domain: str) -> bool:
        """True when ``domain`` is a verified domain of ``tenant``."""
        normalized = normalize_host(domain)
        if normalized is None:
            return False
        found = await self._directory.find_tenant_by_domain(normalized)
        if found is None:
            return False
        owner, row = found
        return owner.id == tenant.id and row.verified

    async def primary_domain(self, tenant: Tenant) -> Domain:
        domains = await self._directory.list_domains(tenant.id)
        primary = next((d for d in domains if d.is_primary), None)
        if primary is None:
            msg = f"Workspace has no primary domain: {tenant.slug}"
            raise NotFoundError(msg)
        return primary
