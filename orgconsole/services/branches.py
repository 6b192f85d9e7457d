"""
Branch service: CRUD for an organization's physical locations.

Reads are open to every organization member; mutations require a managing
organization role (owner, admin or manager).
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.errors import ConflictError, NotFound, store_errors
from orgconsole.models.branch import Branch, BranchMembership
from orgconsole.models.organization import Organization
from orgconsole.services.authorization import Operation, require
from orgconsole_shared.schemas.branches import BranchCreateRequest, BranchUpdateRequest

log = structlog.get_logger()

CODE_TAKEN = "A branch with this code already exists in this organization"


async def list_branches(org: Organization, session: AsyncSession) -> list[Branch]:
    result = await session.execute(
        select(Branch).where(Branch.organization_id == org.id).order_by(Branch.name)
    )
    return list(result.scalars().all())


async def get_branch(org: Organization, branch_id: uuid.UUID, session: AsyncSession) -> Branch:
    branch = await session.get(Branch, branch_id)
    if branch is None or branch.organization_id != org.id:
        raise NotFound("Branch not found")
    return branch


async def _code_taken(
    org: Organization, code: str, session: AsyncSession, exclude: uuid.UUID | None = None
) -> bool:
    query = select(Branch.id).where(Branch.organization_id == org.id, Branch.code == code)
    if exclude is not None:
        query = query.where(Branch.id != exclude)
    result = await session.execute(query)
    return result.first() is not None


async def create_branch(
    org: Organization,
    role: str | None,
    req: BranchCreateRequest,
    session: AsyncSession,
) -> Branch:
    require(role, Operation.MANAGE_BRANCHES, "You do not have permission to create branches for this organization")
    if await _code_taken(org, req.code, session):
        raise ConflictError(CODE_TAKEN)

    with store_errors(conflict_message=CODE_TAKEN):
        branch = Branch(organization_id=org.id, **req.model_dump())
        session.add(branch)
        await session.flush()

    log.info("branch.created", org_id=str(org.id), branch_id=str(branch.id), code=branch.code)
    return branch


async def update_branch(
    org: Organization,
    role: str | None,
    branch_id: uuid.UUID,
    req: BranchUpdateRequest,
    session: AsyncSession,
) -> Branch:
    require(role, Operation.MANAGE_BRANCHES, "You do not have permission to update branches for this organization")
    branch = await get_branch(org, branch_id, session)

    changes = req.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    if changes.get("code") is None:
        changes.pop("code", None)
    elif await _code_taken(org, changes["code"], session, exclude=branch.id):
        raise ConflictError(CODE_TAKEN)
    if changes.get("is_active") is None:
        changes.pop("is_active", None)

    with store_errors(conflict_message=CODE_TAKEN):
        for field, value in changes.items():
            setattr(branch, field, value)
        session.add(branch)
        await session.flush()

    log.info("branch.updated", org_id=str(org.id), branch_id=str(branch.id), fields=sorted(changes))
    return branch


async def delete_branch(
    org: Organization,
    role: str | None,
    branch_id: uuid.UUID,
    session: AsyncSession,
) -> None:
    require(role, Operation.MANAGE_BRANCHES, "You do not have permission to delete branches for this organization")
    branch = await get_branch(org, branch_id, session)
    with store_errors():
        await session.execute(delete(BranchMembership).where(BranchMembership.branch_id == branch.id))
        await session.delete(branch)
        await session.flush()
    log.info("branch.deleted", org_id=str(org.id), branch_id=str(branch_id))
