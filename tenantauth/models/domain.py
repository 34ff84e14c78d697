"""Inter-module data contracts (not persisted directly)."""

from pydantic import BaseModel

from tenantauth.types import AuthContext, VerifyAction


class ExternalProfile(BaseModel):
    account_id: str  # provider-side stable subject
    email: str
    name: str | None = None
    avatar: str | None = None
    email_verified: bool = False


class ProviderTokens(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    id_token: str | None = None


class VerifyOutcome(BaseModel):
    action: VerifyAction
    user_id: str | None = None


class LinkResult(BaseModel):
    user_id: str
    created: bool = False


class Redemption(BaseModel):
    user_id: str
    tenant_id: str
    callback_path: str = "/"
    context: AuthContext = AuthContext.PORTAL
    popup: bool = False


class InitiateResult(BaseModel):
    url: str
    state_token: str
    nonce: str


class CallbackResult(BaseModel):
    redirect_url: str
    user_id: str | None = None
    tenant_id: str | None = None
    context: AuthContext | None = None
    # Set when the callback host is the return domain and no transfer is needed
    establish_session: bool = False
    popup: bool = False


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    retry_after: int = 0


class WorkspaceRef(BaseModel):
    slug: str
    name: str
    domain: str | None = None
