"""
Create a local account that owns an organization, for local testing.

    python -m orgconsole.scripts.create_local_owner --email me@example.com \
        --password secret --org-name "Corner Cafe" --org-slug corner-cafe --org-type cafe
"""

import argparse
import asyncio

import structlog
from sqlmodel import select

from orgconsole.core.database import bind_caller, get_session_context, init_db
from orgconsole.models.organization import Organization
from orgconsole.services.directory import LocalIdentityDirectory
from orgconsole.services.organizations import create_organization
from orgconsole_shared.schemas.organizations import OrgCreateRequest

log = structlog.get_logger()


async def create_owner(email: str, password: str, org_name: str, org_slug: str, org_type: str) -> None:
    await init_db()
    request = OrgCreateRequest(name=org_name, slug=org_slug, type=org_type)

    async with get_session_context() as session:
        directory = LocalIdentityDirectory(session)
        account = await directory.find_by_email(email)
        if account is None:
            account = await directory.register(email, password)
            print(f"Created user: {account.email}")
        else:
            print(f"User {account.email} already exists.")

        await bind_caller(session, account.id)
        result = await session.execute(select(Organization).where(Organization.slug == request.slug))
        if result.scalar_one_or_none():
            print(f"Organization '{request.slug}' already exists.")
        else:
            await create_organization(request, account, session)
            print(f"Created organization '{request.slug}' owned by {account.email}.")
    print("Done.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a local organization owner.")
    parser.add_argument("--email", required=True, help="Email address for the user")
    parser.add_argument("--password", required=True, help="Password for the user")
    parser.add_argument("--org-name", default="Default Organization")
    parser.add_argument("--org-slug", default="default")
    parser.add_argument("--org-type", default="other")

    args = parser.parse_args()

    asyncio.run(create_owner(args.email, args.password, args.org_name, args.org_slug, args.org_type))
