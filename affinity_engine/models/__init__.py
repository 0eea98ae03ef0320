"""
Affinity Engine — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from affinity_engine.models.person import Person, Team, TeamMember
from affinity_engine.models.practice import (
    Goal,
    Practice,
    PracticeContext,
    PracticeDifficultyFlag,
    PracticeGoal,
)
from affinity_engine.models.survey import SurveyItem, SurveyResponse
from affinity_engine.models.profile import PersonalityProfile
from affinity_engine.models.affinity import PersonPracticeAffinity

__all__ = [
    "Person",
    "Team",
    "TeamMember",
    "Goal",
    "Practice",
    "PracticeContext",
    "PracticeDifficultyFlag",
    "PracticeGoal",
    "SurveyItem",
    "SurveyResponse",
    "PersonalityProfile",
    "PersonPracticeAffinity",
]
