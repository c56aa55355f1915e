import logging
from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .models import User

logger = logging.getLogger(__name__)


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """
    Authentication happens upstream; the gateway forwards the caller's id in
    ``X-User-Id``. Missing, malformed or unknown ids are rejected with 401.
    """
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    user = (await db.execute(select(User).where(User.id == int(x_user_id)))).scalars().first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def parse_id_list(raw: Optional[str], *, field: str) -> Optional[list[int]]:
    """'3,4, 9' -> [3, 4, 9]; blank -> None; anything else (',,' too) is a 400."""
    if raw is None or not raw.strip():
        return None
    ids = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise HTTPException(status_code=400, detail=f"Invalid id in {field}: {part!r}")
        ids.append(int(part))
    if not ids:
        raise HTTPException(status_code=400, detail=f"No ids in {field}: {raw!r}")
    return ids


def parse_when(raw: Optional[str], *, field: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Accept an ISO date or datetime. A bare date used as an upper bound covers
    the whole day. Naive values are taken as UTC.
    """
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    try:
        if len(raw) == 10:
            d = date.fromisoformat(raw)
            value = datetime.combine(d, time.max if end_of_day else time.min)
        else:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date for {field}: {raw!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


async def require_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_superuser:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
