from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from affinity_engine.schemas.affinity import TeamAffinitySummary


class PracticeSummary(BaseModel):
    id: int
    practice_id: int
    name: str
    version_name: str
    description: Optional[str] = None
    objective: Optional[str] = None

    model_config = {"from_attributes": True}


class Recommendation(BaseModel):
    practice: PracticeSummary
    team_affinity: TeamAffinitySummary
    recommended: bool
    reason: str


class Alternative(BaseModel):
    practice: PracticeSummary
    team_affinity: TeamAffinitySummary
    original_average: float
    affinity_improvement: float
    shared_goal_ids: list[int]
    reason: str


class ReportSummary(BaseModel):
    total_practices: int = 0
    recommended_count: int = 0
    low_count: int = 0
    alternative_count: int = 0


class ComprehensiveReport(BaseModel):
    member_ids: list[int]
    threshold: float
    generated_at: datetime
    recommended: list[Recommendation] = Field(default_factory=list)
    flagged_low: list[Recommendation] = Field(default_factory=list)
    alternatives: list[Alternative] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)


class TeamDashboard(BaseModel):
    team_id: int
    report: ComprehensiveReport


class DifficultyFlagCreate(BaseModel):
    person_id: int
    practice_version_id: int
    reason: Optional[str] = None
    context_id: Optional[int] = None


class DifficultyFlagResponse(BaseModel):
    person_id: int
    practice_version_id: int
    reason: Optional[str] = None
    context_id: Optional[int] = None

    model_config = {"from_attributes": True}


class FlaggedPractice(BaseModel):
    practice: PracticeSummary
    flag_count: int
    reasons: list[str]
    alternatives: list[Alternative]
