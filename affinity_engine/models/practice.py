"""
Affinity Engine — Practice versions, goals and their links.

``practices`` holds one row per practice *version*; ``trait_weights`` is the
expert-declared Big-Five weighting used by the affinity calculator.  Practice
versions without trait weights are never scored.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from affinity_engine.database import Base

# Python None is stored as SQL NULL so "has no trait profile" is an IS NULL test
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Practice(Base):
    __tablename__ = "practices"

    id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True, comment="practice version id"
    )
    practice_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True, comment="Logical practice shared by versions"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    version_name: Mapped[str] = mapped_column(String(255), nullable=False, default="v1.0")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    objective: Mapped[str | None] = mapped_column(String(255), nullable=True)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    trait_weights: Mapped[dict | None] = mapped_column(
        JSONType, nullable=True, comment="{o,c,e,a,n: weight in [-1, 1]}"
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Practice version={self.id} name={self.name!r}>"


class Goal(Base):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class PracticeGoal(Base):
    __tablename__ = "practice_goals"

    practice_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("practices.id", ondelete="CASCADE"), primary_key=True
    )
    goal_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("goals.id", ondelete="CASCADE"), primary_key=True, index=True
    )


class PracticeContext(Base):
    """Situational contexts a practice version is known to fit."""

    __tablename__ = "practice_contexts"

    practice_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("practices.id", ondelete="CASCADE"), primary_key=True
    )
    context_id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)


class PracticeDifficultyFlag(Base):
    __tablename__ = "practice_difficulty_flags"
    __table_args__ = (
        UniqueConstraint(
            "person_id", "practice_version_id", name="uq_difficulty_person_practice"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False
    )
    practice_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("practices.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    context_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    flagged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<PracticeDifficultyFlag person={self.person_id} "
            f"practice={self.practice_version_id}>"
        )
