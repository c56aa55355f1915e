import os
from datetime import datetime, timezone

# keep imports of saga.* away from a real Postgres and the scheduler
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./saga-test.db")
os.environ.setdefault("START_SCHEDULER", "false")

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from saga.database import Base
from saga.models import (
    Chapter,
    MemberRole,
    Project,
    ProjectMember,
    Story,
    StoryStatus,
    User,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'saga.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def seed(session_maker):
    """
    Two projects. Alice created project 1, Bob is a storyteller in it,
    Carol is an outsider and Root is a superuser.
    """
    async with session_maker() as db:
        alice = User(email="alice@example.com", username="alice")
        bob = User(email="bob@example.com", username="bob")
        carol = User(email="carol@example.com", username="carol")
        root = User(email="root@example.com", username="root", is_superuser=True)
        db.add_all([alice, bob, carol, root])
        await db.flush()

        family = Project(name="Family history", created_by=alice.id)
        other = Project(name="Someone else", created_by=carol.id)
        db.add_all([family, other])
        await db.flush()

        db.add(ProjectMember(project_id=family.id, user_id=bob.id, role=MemberRole.storyteller.value))
        childhood = Chapter(project_id=family.id, name="Childhood", order_index=0)
        war = Chapter(project_id=family.id, name="War years", order_index=1)
        db.add_all([childhood, war])
        await db.flush()

        garden = Story(
            project_id=family.id,
            storyteller_id=bob.id,
            chapter_id=childhood.id,
            title="Grandma's Garden",
            transcript="We planted tomatoes in the garden every spring",
            status=StoryStatus.ready.value,
            created_at=utc(2024, 1, 10, 12),
        )
        barracks = Story(
            project_id=family.id,
            storyteller_id=bob.id,
            chapter_id=war.id,
            title="The War Years",
            transcript="Grandpa told stories about the garden behind the barracks",
            status=StoryStatus.ready.value,
            created_at=utc(2024, 3, 5, 12),
        )
        pending = Story(
            project_id=family.id,
            storyteller_id=bob.id,
            chapter_id=childhood.id,
            title="Garden party",
            transcript="Still being transcribed garden notes",
            status=StoryStatus.processing.value,
            created_at=utc(2024, 4, 1, 12),
        )
        fishing = Story(
            project_id=family.id,
            storyteller_id=alice.id,
            chapter_id=childhood.id,
            title="Fishing trip",
            transcript="We caught a huge fish at the lake",
            status=StoryStatus.ready.value,
            created_at=utc(2024, 2, 20, 12),
        )
        elsewhere = Story(
            project_id=other.id,
            storyteller_id=carol.id,
            title="A garden somewhere else",
            transcript="This garden belongs to another family",
            status=StoryStatus.ready.value,
            created_at=utc(2024, 2, 1, 12),
        )
        db.add_all([garden, barracks, pending, fishing, elsewhere])
        await db.commit()

        return {
            "alice": alice.id,
            "bob": bob.id,
            "carol": carol.id,
            "root": root.id,
            "project": family.id,
            "other_project": other.id,
            "childhood": childhood.id,
            "war": war.id,
            "garden": garden.id,
            "barracks": barracks.id,
            "pending": pending.id,
            "fishing": fishing.id,
            "elsewhere": elsewhere.id,
        }
