"""
Database models for the remote problem store.

Defines SQLAlchemy models for problems, attempts and user settings. The
application queries these tables with plain SQL through asyncpg; the models
are the schema definition used to generate DDL for Supabase.
"""

from typing import List

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.schema import CreateIndex, CreateTable
from sqlalchemy.sql import func

Base = declarative_base()


class ProblemRow(Base):
    """
    A practice problem owned by one Supabase user.

    The CHECK constraint mirrors the lifecycle: a queue position only while
    queued, a review date only while active, neither once mastered.
    """
    __tablename__ = "problems"

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    user_id = Column(UUID(as_uuid=True), nullable=False)
    problem_name = Column(Text, nullable=False)
    problem_link = Column(Text, nullable=True)
    difficulty = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, server_default="queued")
    queue_position = Column(Integer, nullable=True)
    next_review_date = Column(Date, nullable=True)
    attempt_count = Column(Integer, nullable=False, server_default="0")
    consecutive_fives = Column(Integer, nullable=False, server_default="0")
    last_rating = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    mastered_at = Column(DateTime(timezone=True), nullable=True)
    source = Column(Text, nullable=True)
    topic = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("length(trim(problem_name)) > 0", name="ck_problems_name_not_empty"),
        CheckConstraint("difficulty IN ('Easy', 'Medium', 'Hard')", name="ck_problems_difficulty"),
        CheckConstraint("last_rating BETWEEN 1 AND 5", name="ck_problems_last_rating"),
        CheckConstraint(
            "(status = 'queued' AND queue_position IS NOT NULL AND next_review_date IS NULL)"
            " OR (status = 'active' AND queue_position IS NULL AND next_review_date IS NOT NULL)"
            " OR (status = 'mastered' AND queue_position IS NULL AND next_review_date IS NULL"
            " AND mastered_at IS NOT NULL)",
            name="ck_problems_lifecycle",
        ),
        Index("idx_problems_user_status", "user_id", "status"),
        Index(
            "idx_problems_user_queue_position",
            "user_id",
            "queue_position",
            unique=True,
            postgresql_where=text("queue_position IS NOT NULL"),
        ),
    )

    def __repr__(self):
        return f"<ProblemRow(id={self.id}, user_id={self.user_id}, status={self.status})>"


class AttemptRow(Base):
    """One rating event. Rows are only ever inserted, and go away with their problem."""
    __tablename__ = "attempts"

    id = Column(UUID(as_uuid=True), primary_key=True, server_default=text("gen_random_uuid()"))
    problem_id = Column(
        UUID(as_uuid=True),
        ForeignKey("problems.id", ondelete="CASCADE"),
        nullable=False,
    )
    rating = Column(Integer, CheckConstraint("rating BETWEEN 1 AND 5", name="ck_attempts_rating"), nullable=False)
    attempted_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    notes = Column(Text, nullable=True)
    time_spent_minutes = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_attempts_problem_attempted_at", "problem_id", "attempted_at"),
    )

    def __repr__(self):
        return f"<AttemptRow(id={self.id}, problem_id={self.problem_id}, rating={self.rating})>"


class UserSettingsRow(Base):
    """Per-user settings, including the daily audit bookkeeping."""
    __tablename__ = "user_settings"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    last_audit_date = Column(Date, nullable=True)
    audit_problem_id = Column(
        UUID(as_uuid=True),
        ForeignKey("problems.id", ondelete="SET NULL"),
        nullable=True,
    )
    daily_goal = Column(Integer, nullable=False, server_default="3")
    enable_audits = Column(Boolean, nullable=False, server_default=text("true"))
    theme = Column(String(32), nullable=False, server_default="dark")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)

    def __repr__(self):
        return f"<UserSettingsRow(user_id={self.user_id}, last_audit_date={self.last_audit_date})>"


def schema_statements() -> List[str]:
    """CREATE TABLE / CREATE INDEX statements for PostgreSQL, in dependency order."""
    dialect = postgresql.dialect()
    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)).strip())
        for index in sorted(table.indexes, key=lambda idx: idx.name):
            statements.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)).strip())
    return statements
