from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import sys

from chatdesk.persistence.db import SessionLocal
from chatdesk.persistence.repos import tenants as tenants_repo
from chatdesk.services import ledger
from chatdesk.services.auth.accounts import create_user_account
from chatdesk.services.embed import embed_snippet
from chatdesk.services.replies import generate_reply
from chatdesk.services.tenants import create_tenant_for_owner


DEMO_EMAIL = "owner@demo-bistro.com"
DEMO_PASSWORD = "demo-password"
DEMO_DOMAIN = "demo-bistro.com"


@dataclass(frozen=True)
class DemoVisit:
    visitor_id: str
    messages: tuple[str, ...]


def build_demo_visits() -> tuple[DemoVisit, ...]:
    return (
        DemoVisit(visitor_id="visitor_demo_1", messages=("Hello!", "What are your opening hours?")),
        DemoVisit(visitor_id="visitor_demo_2", messages=("Can I book a table for Friday?",)),
        DemoVisit(visitor_id="visitor_demo_3", messages=("Where is your location?", "Thanks")),
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed a demo client with sample conversations")
    parser.add_argument("--plan", default="business", help="starter|business|pro")
    return parser


async def seed(plan: str) -> int:
    async with SessionLocal() as session:
        existing = await tenants_repo.get_tenant_by_domain(session, DEMO_DOMAIN)
        if existing is not None:
            print(f"Demo client already exists: {existing.id}")
            return 0
        owner = await create_user_account(session, email=DEMO_EMAIL, password=DEMO_PASSWORD)
        tenant = await create_tenant_for_owner(
            session,
            owner,
            name="Demo Bistro",
            domain=DEMO_DOMAIN,
            plan=plan,
            business_type="restaurant",
            description="Neighbourhood bistro used for local demos.",
        )
        for visit in build_demo_visits():
            conversation = await ledger.get_or_create_active_conversation(session, tenant.id, visit.visitor_id)
            for text in visit.messages:
                reply = generate_reply(tenant, text)
                await ledger.append_message(session, tenant.id, conversation.id, "user", text)
                await ledger.append_message(
                    session, tenant.id, conversation.id, "assistant", reply.content, reply.metadata()
                )
                await tenants_repo.increment_usage(session, tenant.id, count_against_limit=plan != "pro")
        await session.commit()

        print("Demo client seeded:")
        print(f"  client_id: {tenant.id}")
        print(f"  login: {DEMO_EMAIL} / {DEMO_PASSWORD}")
        print(f"  embed: {embed_snippet(tenant)}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(seed(args.plan))
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
