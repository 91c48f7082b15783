"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.organizations.models import Membership, Organization
from app.features.organizations.service import get_membership, get_organization


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.

    Args:
        organization_id: Organization ULID
        db: Database session

    Raises:
        NotFoundError: organization does not exist
    """
    return await get_organization(db, organization_id)


async def get_membership_by_id(
    organization_id: str,
    membership_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Membership:
    """
    Get a membership of the organization named in the path.

    A membership id belonging to another organization is reported as not found.
    """
    return await get_membership(db, organization_id, membership_id)
