"""baseline schema

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19 09:12:44.310527

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from saga.database import Base

# revision identifiers, used by Alembic.
revision: str = "3f1c9a7d2b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all database objects for the current metadata."""
    bind: Connection = op.get_bind()
    Base.metadata.create_all(bind)
    if bind.dialect.name == "postgresql":
        op.create_index(
            "ix_story_search_vector",
            "story",
            ["search_vector"],
            postgresql_using="gin",
        )


def downgrade() -> None:
    """Drop all database objects managed by the metadata."""
    bind: Connection = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.drop_index("ix_story_search_vector", table_name="story")
    Base.metadata.drop_all(bind)
