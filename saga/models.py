from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, Float, func,
    UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TSVECTOR

from .database import Base

# JSONB on Postgres, plain JSON (text) on SQLite
JSON = sa.JSON().with_variant(JSONB(), "postgresql")
# tsvector on Postgres; the fallback backend never reads this column
SearchVector = Text().with_variant(TSVECTOR(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoryStatus(str, enum.Enum):
    processing = "processing"
    ready = "ready"
    failed = "failed"


class MemberRole(str, enum.Enum):
    facilitator = "facilitator"
    storyteller = "storyteller"


class ResourceType(str, enum.Enum):
    project_voucher = "project_voucher"
    facilitator_seat = "facilitator_seat"
    storyteller_seat = "storyteller_seat"


class TransactionType(str, enum.Enum):
    purchase = "purchase"
    consume = "consume"
    refund = "refund"
    grant = "grant"
    expire = "expire"


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    wallet = relationship("ResourceWallet", back_populates="user", uselist=False)


# ---------------------------
# PROJECTS / MEMBERSHIP
# ---------------------------
class Project(Base):
    __tablename__ = "project"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    created_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(16), default="active", nullable=False)  # active|archived
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    chapters = relationship(
        "Chapter",
        order_by="Chapter.order_index.asc()",
        back_populates="project",
        cascade="all, delete-orphan",
    )


class ProjectMember(Base):
    __tablename__ = "project_member"

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    role = Column(String(16), nullable=False)                     # facilitator|storyteller
    status = Column(String(16), default="active", nullable=False)  # active|removed
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    project = relationship("Project", back_populates="members")
    user = relationship("User")

    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)


class Chapter(Base):
    __tablename__ = "chapter"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), index=True, nullable=False)
    name = Column(String(200), nullable=False)
    order_index = Column(Integer, default=0, nullable=False)   # lower = earlier

    project = relationship("Project", back_populates="chapters")


# ---------------------------
# STORIES
# ---------------------------
class Story(Base):
    __tablename__ = "story"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("project.id", ondelete="CASCADE"), index=True, nullable=False)
    storyteller_id = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), index=True, nullable=True)
    chapter_id = Column(Integer, ForeignKey("chapter.id", ondelete="SET NULL"), index=True, nullable=True)
    title = Column(String(200), nullable=True)
    transcript = Column(Text, nullable=True)
    status = Column(String(16), default=StoryStatus.processing.value, nullable=False)  # processing|ready|failed
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    # derived search representations; which one is used depends on the backend
    search_vector = Column(SearchVector, nullable=True)
    search_content = Column(Text, nullable=True)

    project = relationship("Project")
    chapter = relationship("Chapter")

    __table_args__ = (
        Index("ix_story_project_status_created", "project_id", "status", "created_at"),
    )


class SearchAnalytics(Base):
    """
    One append-only row per search call.
    Only the retention job ever deletes rows.
    """
    __tablename__ = "search_analytics"

    id = Column(Integer, primary_key=True)
    query = Column(String(200), nullable=False)
    project_id = Column(Integer, nullable=False)   # no FK: analytics must never fail on a stale id
    user_id = Column(Integer, nullable=True)
    result_count = Column(Integer, default=0, nullable=False)
    clicked_results = Column(JSON, nullable=True)  # list[int]
    search_time = Column(Float, default=0.0, nullable=False)  # milliseconds
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    __table_args__ = (
        Index("ix_search_analytics_project_created", "project_id", "created_at"),
    )


# ---------------------------
# RESOURCE WALLET / LEDGER
# ---------------------------
class ResourceWallet(Base):
    __tablename__ = "resource_wallet"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), unique=True, index=True, nullable=False)
    project_vouchers = Column(Integer, default=0, nullable=False)
    facilitator_seats = Column(Integer, default=0, nullable=False)
    storyteller_seats = Column(Integer, default=0, nullable=False)
    # bumped on every UPDATE; a stale writer gets StaleDataError and retries
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now())

    user = relationship("User", back_populates="wallet")

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        CheckConstraint("project_vouchers >= 0", name="ck_wallet_project_vouchers_nonneg"),
        CheckConstraint("facilitator_seats >= 0", name="ck_wallet_facilitator_seats_nonneg"),
        CheckConstraint("storyteller_seats >= 0", name="ck_wallet_storyteller_seats_nonneg"),
    )


class SeatTransaction(Base):
    __tablename__ = "seat_transaction"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    transaction_type = Column(String(16), nullable=False)  # purchase|consume|refund|grant|expire
    resource_type = Column(String(32), nullable=False)     # project_voucher|facilitator_seat|storyteller_seat
    amount = Column(Integer, nullable=False)               # negative = consumption, positive = credit
    project_id = Column(Integer, nullable=True, index=True)
    description = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    __table_args__ = (
        CheckConstraint("amount <> 0", name="ck_seat_transaction_amount_nonzero"),
        Index("ix_seat_transaction_user_created", "user_id", "created_at"),
    )
