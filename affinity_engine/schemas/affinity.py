from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PersonPracticeAffinityRow(BaseModel):
    person_id: int
    practice_version_id: int
    affinity: int = Field(ge=0, le=100)

    model_config = {"from_attributes": True}


class AffinityAvailability(str, Enum):
    AVAILABLE = "available"
    NOT_COMPUTED = "not_computed"
    PROFILE_INCOMPLETE = "profile_incomplete"


class PersonAffinityView(BaseModel):
    person_id: int
    practice_version_id: int
    affinity: Optional[int] = None
    availability: AffinityAvailability


class MemberScore(BaseModel):
    person_id: int
    affinity: int


class TeamAffinitySummary(BaseModel):
    practice_version_id: int
    average: float = 0.0
    minimum: int = 0
    maximum: int = 0
    standard_deviation: float = 0.0
    member_count: int = 0
    team_size: int = 0
    individual_scores: list[int] = Field(default_factory=list)
    members: list[MemberScore] = Field(default_factory=list)


class MemberRecalculation(BaseModel):
    person_id: int
    success: bool
    affinity_count: int = 0
    error: Optional[str] = None


class TeamRecalculationReport(BaseModel):
    team_id: int
    total_members: int
    successful: int
    errors: int
    results: list[MemberRecalculation]
