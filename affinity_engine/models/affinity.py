"""
Affinity Engine — Derived per-person, per-practice-version affinity rows.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from affinity_engine.database import Base


class PersonPracticeAffinity(Base):
    __tablename__ = "person_practice_affinities"
    __table_args__ = (
        UniqueConstraint(
            "person_id", "practice_version_id", name="uq_affinity_person_practice"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False, index=True
    )
    practice_version_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("practices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    affinity: Mapped[int] = mapped_column(Integer, nullable=False, comment="0-100")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<PersonPracticeAffinity person={self.person_id} "
            f"practice={self.practice_version_id} affinity={self.affinity}>"
        )
