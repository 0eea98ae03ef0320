"""
Affinity Engine — Profile & Affinity API

Endpoints for submitting survey answers, reading personality profiles and
reading or recalculating person and team affinities.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, status

from affinity_engine.api.dependencies import get_engine, parse_id_list
from affinity_engine.schemas.affinity import (
    PersonAffinityView,
    PersonPracticeAffinityRow,
    TeamAffinitySummary,
    TeamRecalculationReport,
)
from affinity_engine.schemas.profile import ProfileView, SurveySubmission
from affinity_engine.services.engine import AffinityEngine

logger = structlog.get_logger("affinity_engine.api.affinity")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# POST /persons/{person_id}/survey: submit Likert answers
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/persons/{person_id}/survey",
    response_model=ProfileView,
    status_code=status.HTTP_201_CREATED,
    summary="Submit survey answers and rescore the personality profile",
)
async def submit_survey(
    person_id: int,
    body: SurveySubmission,
    engine: AffinityEngine = Depends(get_engine),
) -> ProfileView:
    """Append the answers, rescore the profile from the full history and
    recalculate every practice affinity for the person.

    A single result outside 1-5 rejects the whole batch with 422.
    """
    logger.info("submit_survey", person_id=person_id, answers=len(body.responses))
    return await engine.submit_survey(
        person_id, [(r.item_id, r.result) for r in body.responses]
    )


@router.get(
    "/persons/{person_id}/profile",
    response_model=ProfileView,
    summary="Get the person's personality profile",
)
async def get_profile(
    person_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> ProfileView:
    return await engine.get_profile(person_id)


@router.get(
    "/persons/{person_id}/practices",
    response_model=list[PersonPracticeAffinityRow],
    summary="List every stored practice affinity for a person",
)
async def list_person_affinities(
    person_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> list[PersonPracticeAffinityRow]:
    return await engine.get_person_affinities(person_id)


@router.get(
    "/persons/{person_id}/practices/{practice_version_id}",
    response_model=PersonAffinityView,
    summary="Get one person's affinity for a practice version",
)
async def get_person_affinity(
    person_id: int,
    practice_version_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> PersonAffinityView:
    return await engine.get_person_affinity(person_id, practice_version_id)


@router.post(
    "/persons/{person_id}/recalculate",
    response_model=list[PersonPracticeAffinityRow],
    summary="Recalculate every practice affinity for a person",
)
async def recalculate_person(
    person_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> list[PersonPracticeAffinityRow]:
    logger.info("recalculate_person", person_id=person_id)
    return await engine.recalculate_affinities(person_id)


# ──────────────────────────────────────────────────────────────────────────────
# Team affinity
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/practices/{practice_version_id}/team",
    response_model=TeamAffinitySummary,
    summary="Aggregate member affinities for a practice version",
)
async def get_team_affinity(
    practice_version_id: int,
    member_ids: str | None = Query(None, description="Comma-separated person ids"),
    engine: AffinityEngine = Depends(get_engine),
) -> TeamAffinitySummary:
    ids = parse_id_list(member_ids, "member_ids")
    return await engine.get_team_affinity(ids, practice_version_id)


@router.post(
    "/practices/{practice_version_id}/recalculate",
    response_model=list[PersonPracticeAffinityRow],
    summary="Rescore a practice version after its trait weights changed",
)
async def recalculate_practice(
    practice_version_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> list[PersonPracticeAffinityRow]:
    logger.info("recalculate_practice", practice_version_id=practice_version_id)
    return await engine.practice_changed(practice_version_id)


@router.post(
    "/teams/{team_id}/recalculate",
    response_model=TeamRecalculationReport,
    summary="Recalculate affinities for every member of a team",
)
async def recalculate_team(
    team_id: int,
    engine: AffinityEngine = Depends(get_engine),
) -> TeamRecalculationReport:
    logger.info("recalculate_team", team_id=team_id)
    return await engine.recalculate_team(team_id)
