"""
Affinity Engine — PersonalityProfile model (Big-Five scores + status).
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from affinity_engine.database import Base


class PersonalityProfile(Base):
    __tablename__ = "personality_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("persons.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, comment="incomplete / partially_complete / complete"
    )
    o: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    c: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    e: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    a: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    n: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    answered_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    recalculation_pending: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<PersonalityProfile person={self.person_id} "
            f"status={self.status!r} v={self.version}>"
        )
