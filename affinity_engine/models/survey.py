"""
Affinity Engine — Questionnaire catalogue and raw Likert responses.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from affinity_engine.database import Base


class SurveyItem(Base):
    """One questionnaire statement, tagged with exactly one Big-Five dimension."""

    __tablename__ = "survey_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content: Mapped[str] = mapped_column(String(255), nullable=False)
    dimension: Mapped[str] = mapped_column(
        String(1), nullable=False, comment="o / c / e / a / n"
    )
    reverse_keyed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<SurveyItem #{self.id} dimension={self.dimension!r}>"


class SurveyResponse(Base):
    """Append-only answer history; the highest id per (person, item) wins."""

    __tablename__ = "survey_responses"
    __table_args__ = (
        Index("ix_survey_responses_person_item", "person_id", "item_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("persons.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("survey_items.id"), nullable=False
    )
    result: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-5")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<SurveyResponse person={self.person_id} "
            f"item={self.item_id} result={self.result}>"
        )
