from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from chatdesk.persistence.db import SessionLocal
from chatdesk.persistence.repos import users as users_repo
from chatdesk.services.audit import record_event
from chatdesk.services.auth.accounts import create_user_account


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an admin account")
    parser.add_argument("--email", required=True, help="Admin login email")
    parser.add_argument(
        "--password",
        default=None,
        help="Admin password; prompted for when omitted",
    )
    parser.add_argument(
        "--promote",
        action="store_true",
        help="Promote an existing account instead of failing on duplicate email",
    )
    return parser


async def _create_admin(args: argparse.Namespace, password: str) -> int:
    async with SessionLocal() as session:
        existing = await users_repo.get_user_by_email(session, args.email)
        if existing is not None:
            if not args.promote:
                raise ValueError("Email already registered; pass --promote to grant admin")
            if existing.tenant_id:
                raise ValueError("Client owners cannot be promoted; create a separate admin email")
            existing.role = "admin"
            user = existing
        else:
            user = await create_user_account(session, email=args.email, password=password, role="admin")
        await record_event(
            session=session,
            tenant_id=None,
            actor_type="system",
            actor_id="create_admin",
            actor_role="admin",
            event_type="admin.user.created",
            outcome="success",
            resource_type="user",
            resource_id=user.id,
            metadata={"promoted": existing is not None},
        )
        await session.commit()

    print("Admin ready:")
    print(f"  user_id: {user.id}")
    print(f"  email: {user.email}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    password = args.password or getpass.getpass("Password: ")
    try:
        return asyncio.run(_create_admin(args, password))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_admin failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
