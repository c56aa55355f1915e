# saga/services/directory.py
"""Project membership lookups used to gate the search and reindex endpoints."""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from saga.models import MemberRole, Project, ProjectMember

ACTIVE = "active"


async def project_exists(db: AsyncSession, project_id: int) -> bool:
    return (await db.execute(select(Project.id).where(Project.id == project_id))).first() is not None


async def get_user_role(db: AsyncSession, project_id: int, user_id: int) -> Optional[str]:
    """
    The project's creator always counts as facilitator; otherwise the role
    of an active membership row, or None.
    """
    creator = (
        await db.execute(select(Project.created_by).where(Project.id == project_id))
    ).scalar_one_or_none()
    if creator is not None and creator == user_id:
        return MemberRole.facilitator.value

    role = (
        await db.execute(
            select(ProjectMember.role).where(
                ProjectMember.project_id == project_id,
                ProjectMember.user_id == user_id,
                ProjectMember.status == ACTIVE,
            )
        )
    ).scalar_one_or_none()
    return role


async def has_user_access(db: AsyncSession, project_id: int, user_id: int) -> bool:
    return await get_user_role(db, project_id, user_id) is not None


__all__ = ["project_exists", "get_user_role", "has_user_access"]
