from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

DIMENSIONS: tuple[str, ...] = ("o", "c", "e", "a", "n")


class ProfileStatus(str, Enum):
    INCOMPLETE = "incomplete"
    PARTIALLY_COMPLETE = "partially_complete"
    COMPLETE = "complete"


class SurveyAnswer(BaseModel):
    item_id: int
    # Range is enforced by the scoring function so the whole batch is
    # rejected with InvalidResponseError rather than a per-field error.
    result: int


class SurveySubmission(BaseModel):
    responses: list[SurveyAnswer] = Field(default_factory=list)


class ProfileScores(BaseModel):
    """Output of the scoring function: five dimensions plus status."""

    o: float = 0.0
    c: float = 0.0
    e: float = 0.0
    a: float = 0.0
    n: float = 0.0
    status: ProfileStatus = ProfileStatus.COMPLETE
    answered_items: int = 0

    def vector(self) -> dict[str, float]:
        return {dim: getattr(self, dim) for dim in DIMENSIONS}


class ProfileView(BaseModel):
    person_id: int
    status: ProfileStatus
    scores: Optional[dict[str, float]] = None
    answered_items: int = 0
    has_data: bool = False
    version: int = 0
    recalculation_pending: bool = False
    stored_responses: int = 0

    model_config = {"from_attributes": True}
