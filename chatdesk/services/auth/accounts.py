from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatdesk.core.config import get_settings
from chatdesk.core.errors import Conflict, Forbidden, Unauthenticated, ValidationFailed
from chatdesk.domain.models import Tenant, User
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.persistence.repos import users as users_repo
from chatdesk.services.auth.passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password
from chatdesk.services.tenants import create_tenant_for_owner, delete_tenant


logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")


def validate_email(email: str | None) -> str:
    value = users_repo.normalize_email(email or "")
    if not value or not _EMAIL_RE.match(value):
        raise ValidationFailed("Please provide a valid email", code="INVALID_EMAIL")
    return value


def validate_password(password: str | None) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", code="INVALID_PASSWORD"
        )
    return password


async def create_user_account(
    session: AsyncSession, *, email: str, password: str, role: str = "client"
) -> User:
    email = validate_email(email)
    validate_password(password)
    if await users_repo.get_user_by_email(session, email) is not None:
        raise Conflict("Email already registered", code="EMAIL_TAKEN")
    try:
        return await users_repo.create_user(
            session, email=email, password_hash=hash_password(password), role=role
        )
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("Email already registered", code="EMAIL_TAKEN") from exc


async def signup(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    domain: str,
    business_type: str | None = None,
    description: str | None = None,
) -> tuple[User, Tenant]:
    # One client user and exactly one tenant, committed together by the caller.
    user = await create_user_account(session, email=email, password=password, role="client")
    tenant = await create_tenant_for_owner(
        session,
        user,
        name=name,
        domain=domain,
        plan=get_settings().signup_default_plan,
        business_type=business_type,
        description=description,
    )
    logger.info("signup_completed user_id=%s tenant_id=%s", user.id, tenant.id)
    return user, tenant


async def authenticate(session: AsyncSession, *, email: str, password: str) -> tuple[User, Tenant | None]:
    user = await users_repo.get_user_by_email(session, email or "")
    # Same error for unknown email and wrong password.
    if user is None or not verify_password(password or "", user.password_hash):
        raise Unauthenticated("Invalid email or password", code="INVALID_CREDENTIALS")
    if not user.is_active:
        raise Forbidden("Account is suspended", code="ACCOUNT_INACTIVE")
    tenant = None
    if user.role == "client":
        tenant = await tenants_repo.get_tenant(session, user.tenant_id or "")
        if tenant is None or not tenant.is_active:
            raise Forbidden("Client account is inactive", code="TENANT_INACTIVE")
    await users_repo.touch_last_login(session, user)
    return user, tenant


async def set_user_active(session: AsyncSession, user: User, active: bool) -> User:
    user.is_active = active
    # Suspending an owner also takes their widget offline; activation leaves the tenant to admins.
    if not active and user.role == "client" and user.tenant_id:
        tenant = await tenants_repo.get_tenant(session, user.tenant_id)
        if tenant is not None:
            tenant.is_active = False
    await session.flush()
    logger.info("user_status_changed user_id=%s active=%s", user.id, active)
    return user


async def block_user(session: AsyncSession, user: User, reason: str) -> Tenant | None:
    """Suspend the account for abuse and switch its widget off.

    Unlike a plain suspension the owner's chatbot is disabled too, so reactivating
    the tenant later does not bring the widget back without an explicit config change.
    """
    await set_user_active(session, user, False)
    tenant = None
    if user.role == "client" and user.tenant_id:
        tenant = await tenants_repo.get_tenant(session, user.tenant_id)
        if tenant is not None:
            tenant.chatbot_config = {**(tenant.chatbot_config or {}), "enabled": False}
            await session.flush()
    logger.info("user_blocked user_id=%s reason=%s", user.id, reason)
    return tenant


async def delete_user_account(session: AsyncSession, user: User) -> dict[str, int | str | None]:
    # An owner's tenant and all its conversations go with the account.
    user_id, tenant_id = user.id, user.tenant_id
    counts = {"conversations_deleted": 0, "messages_deleted": 0}
    if tenant_id:
        tenant = await tenants_repo.get_tenant(session, tenant_id)
        if tenant is not None:
            counts = await delete_tenant(session, tenant)
    await users_repo.delete_user(session, user)
    logger.info("user_deleted user_id=%s tenant_id=%s", user_id, tenant_id)
    return {"user_id": user_id, "tenant_id": tenant_id, **counts}
