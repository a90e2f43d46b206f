from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.apps.api.deps import commit_or_fail, get_db, get_identity
from chatdesk.apps.api.openapi import CREATE_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from chatdesk.apps.api.response import SuccessEnvelope, success_response
from chatdesk.apps.api.schemas import TenantResponse, UserResponse
from chatdesk.core.config import get_settings
from chatdesk.core.errors import Unauthenticated
from chatdesk.domain.models import Tenant, User
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.persistence.repos import users as users_repo
from chatdesk.services.audit import record_event
from chatdesk.services.auth import accounts
from chatdesk.services.auth.tokens import Identity, issue_token
from chatdesk.services.stats import usage_snapshot

router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class SignupRequest(BaseModel):
    email: str = Field(max_length=254)
    password: str = Field(min_length=6, max_length=128)
    name: str = Field(min_length=1, max_length=100)
    domain: str = Field(min_length=1, max_length=253)
    business_type: str | None = None
    description: str | None = Field(default=None, max_length=500)


class LoginRequest(BaseModel):
    email: str = Field(max_length=254)
    password: str = Field(max_length=128)


class SessionResponse(BaseModel):
    user: UserResponse
    tenant: TenantResponse | None = None


class MeResponse(BaseModel):
    user: UserResponse
    tenant: TenantResponse | None = None
    usage: dict[str, Any] | None = None


def _set_session_cookie(response: Response, user: User) -> None:
    settings = get_settings()
    token = issue_token(user_id=user.id, role=user.role, email=user.email, tenant_id=user.tenant_id)
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite="lax",
        path="/",
    )


def _session_payload(user: User, tenant: Tenant | None) -> SessionResponse:
    return SessionResponse(
        user=UserResponse.model_validate(user),
        tenant=TenantResponse.model_validate(tenant) if tenant is not None else None,
    )


@router.post(
    "/signup",
    status_code=201,
    response_model=SuccessEnvelope[SessionResponse],
    responses=CREATE_ERROR_RESPONSES,
)
async def signup(
    request: Request,
    response: Response,
    payload: SignupRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    user, tenant = await accounts.signup(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        domain=payload.domain,
        business_type=payload.business_type,
        description=payload.description,
    )
    await record_event(
        session=db,
        tenant_id=tenant.id,
        actor_id=user.id,
        actor_role=user.role,
        event_type="auth.signup",
        outcome="success",
        resource_type="tenant",
        resource_id=tenant.id,
        request=request,
    )
    await commit_or_fail(db, "creating the account")
    _set_session_cookie(response, user)
    return success_response(request=request, data=_session_payload(user, tenant))


@router.post("/login", response_model=SuccessEnvelope[SessionResponse])
async def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> dict:
    try:
        user, tenant = await accounts.authenticate(db, email=payload.email, password=payload.password)
    except Unauthenticated as exc:
        await record_event(
            tenant_id=None,
            actor_type="anonymous",
            actor_id=None,
            actor_role=None,
            event_type="auth.login.failure",
            outcome="failure",
            resource_type="auth",
            request=request,
            error_code=exc.code,
        )
        raise
    await commit_or_fail(db, "recording the login")
    _set_session_cookie(response, user)
    return success_response(request=request, data=_session_payload(user, tenant))


@router.post("/logout")
async def logout(request: Request, response: Response) -> dict:
    response.delete_cookie(key=get_settings().auth_cookie_name, path="/")
    return success_response(request=request, data={"logged_out": True})


@router.get("/me", response_model=SuccessEnvelope[MeResponse])
async def me(
    request: Request,
    identity: Identity = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_repo.get_user(db, identity.user_id)
    if user is None or not user.is_active:
        raise Unauthenticated("Account no longer available", code="AUTH_INVALID")
    tenant = None
    if identity.tenant_id:
        tenant = await tenants_repo.get_tenant(db, identity.tenant_id)
    payload = MeResponse(
        user=UserResponse.model_validate(user),
        tenant=TenantResponse.model_validate(tenant) if tenant is not None else None,
        usage=usage_snapshot(tenant) if tenant is not None else None,
    )
    return success_response(request=request, data=payload)
