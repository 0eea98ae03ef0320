"""
Affinity Engine — Recommendations API

Team-level practice rankings, goal-sharing alternatives, the comprehensive
report, per-team dashboards and practice difficulty flags.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status

from affinity_engine.api.dependencies import get_engine, parse_id_list
from affinity_engine.schemas.recommendation import (
    Alternative,
    ComprehensiveReport,
    DifficultyFlagCreate,
    DifficultyFlagResponse,
    FlaggedPractice,
    Recommendation,
    TeamDashboard,
)
from affinity_engine.services.engine import AffinityEngine

logger = structlog.get_logger("affinity_engine.api.recommendations")

router = APIRouter()

_MEMBER_IDS = "Comma-separated person ids"
_GOAL_IDS = "Comma-separated goal ids; keeps practices linked to any of them"


@router.get(
    "",
    response_model=list[Recommendation],
    summary="Rank practices for a set of team members",
)
async def get_recommendations(
    member_ids: str | None = Query(None, description=_MEMBER_IDS),
    threshold: float | None = Query(None, ge=0, le=100),
    goal_ids: str | None = Query(None, description=_GOAL_IDS),
    context_id: int | None = Query(None),
    engine: AffinityEngine = Depends(get_engine),
) -> list[Recommendation]:
    return await engine.get_recommendations(
        parse_id_list(member_ids, "member_ids"),
        threshold,
        parse_id_list(goal_ids, "goal_ids"),
        context_id,
    )


@router.get(
    "/alternatives/{practice_version_id}",
    response_model=list[Alternative],
    summary="Practices sharing a goal with better team affinity",
)
async def get_alternatives(
    practice_version_id: int,
    member_ids: str | None = Query(None, description=_MEMBER_IDS),
    min_improvement: float | None = Query(None, ge=0),
    engine: AffinityEngine = Depends(get_engine),
) -> list[Alternative]:
    return await engine.get_alternatives(
        practice_version_id,
        parse_id_list(member_ids, "member_ids"),
        min_improvement,
    )


@router.get(
    "/comprehensive",
    response_model=ComprehensiveReport,
    summary="Recommended, low-affinity and alternative practices in one report",
)
async def get_comprehensive_report(
    member_ids: str | None = Query(None, description=_MEMBER_IDS),
    threshold: float | None = Query(None, ge=0, le=100),
    goal_ids: str | None = Query(None, description=_GOAL_IDS),
    context_id: int | None = Query(None),
    include_alternatives: bool = Query(True),
    engine: AffinityEngine = Depends(get_engine),
) -> ComprehensiveReport:
    return await engine.comprehensive_report(
        parse_id_list(member_ids, "member_ids"),
        threshold,
        parse_id_list(goal_ids, "goal_ids"),
        context_id,
        include_alternatives,
    )


@router.post(
    "/flag-difficulty",
    response_model=DifficultyFlagResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Flag a practice version as difficult for a person",
)
async def flag_difficulty(
    body: DifficultyFlagCreate,
    engine: AffinityEngine = Depends(get_engine),
) -> DifficultyFlagResponse:
    logger.info(
        "flag_difficulty",
        person_id=body.person_id,
        practice_version_id=body.practice_version_id,
    )
    return await engine.flag_practice_difficulty(
        body.person_id, body.practice_version_id, body.reason, body.context_id
    )


@router.get(
    "/flagged",
    response_model=list[FlaggedPractice],
    summary="Practices flagged by the members, with their top alternatives",
)
async def get_flagged(
    member_ids: str | None = Query(None, description=_MEMBER_IDS),
    engine: AffinityEngine = Depends(get_engine),
) -> list[FlaggedPractice]:
    return await engine.flagged_practices_with_alternatives(
        parse_id_list(member_ids, "member_ids")
    )


@router.get(
    "/teams/{team_id}/dashboard",
    response_model=TeamDashboard,
    summary="Comprehensive report for a team's current members",
)
async def get_team_dashboard(
    team_id: int,
    threshold: float | None = Query(None, ge=0, le=100),
    engine: AffinityEngine = Depends(get_engine),
) -> TeamDashboard:
    return await engine.get_team_dashboard(team_id, threshold)
