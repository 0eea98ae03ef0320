"""Tests for AffinityService — scoring formula and persisted recalculation."""
import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from affinity_engine.exceptions import NotFoundError, StorageError
from affinity_engine.models.affinity import PersonPracticeAffinity
from affinity_engine.models.practice import Practice
from affinity_engine.schemas.profile import ProfileScores
from affinity_engine.services.affinity_service import AffinityService
from affinity_engine.services.profile_store import ProfileStore


@pytest.fixture
def affinity_service():
    return AffinityService(session_factory=MagicMock(), neutral_score=50)


async def _row_count(factory, **filters):
    async with factory() as session:
        stmt = select(func.count(PersonPracticeAffinity.id)).where(
            *(getattr(PersonPracticeAffinity, column) == value for column, value in filters.items())
        )
        return (await session.execute(stmt)).scalar_one()


class TestAffinityFormula:
    """Pure profile x trait-weights scoring."""

    def test_perfect_and_opposite_fit(self, affinity_service):
        assert affinity_service.affinity({"o": 1.0}, {"o": 1.0}) == 100
        assert affinity_service.affinity({"o": 0.0}, {"o": 1.0}) == 0
        assert affinity_service.affinity({"n": 0.0}, {"n": -1.0}) == 100
        assert affinity_service.affinity({"n": 1.0}, {"n": -1.0}) == 0

    def test_weighted_mix(self, affinity_service):
        # e closeness 0.5 (weight 1.0), c closeness 0.0 (weight 0.5) -> 0.5 / 1.5
        scores = {"o": 1.0, "c": 0.0, "e": 0.5, "a": 0.0, "n": 0.0}
        assert affinity_service.affinity(scores, {"e": 1.0, "c": 0.5}) == 33

    @pytest.mark.parametrize("weights", [None, {}, {"o": 0, "c": 0.0}, {"x": 1.0}])
    def test_empty_or_zero_weights_are_neutral(self, affinity_service, weights):
        assert affinity_service.affinity({"o": 0.7}, weights) == 50

    def test_upper_case_dimension_keys(self, affinity_service):
        scores = {"o": 0.8, "c": 0.2}
        assert affinity_service.affinity(scores, {"O": 1.0, "C": -0.5}) == affinity_service.affinity(
            scores, {"o": 1.0, "c": -0.5}
        )

    def test_bounded_over_grid(self, affinity_service):
        levels = [0.0, 0.25, 0.5, 1.0]
        weights = [-1.0, -0.5, 0.0, 0.5, 1.0]
        for o, c, w_o, w_c in itertools.product(levels, levels, weights, weights):
            value = affinity_service.affinity({"o": o, "c": c}, {"o": w_o, "c": w_c})
            assert isinstance(value, int)
            assert 0 <= value <= 100

    def test_monotonic_in_positively_weighted_dimension(self, affinity_service):
        values = [
            affinity_service.affinity({"e": level, "c": 0.5}, {"e": 1.0, "c": 0.5})
            for level in (0.0, 0.25, 0.5, 0.75, 1.0)
        ]
        assert values == sorted(values)

    def test_out_of_range_weights_are_clamped(self, affinity_service):
        assert affinity_service.affinity({"o": 1.0}, {"o": 7.0}) == 100


@pytest.mark.asyncio
class TestRecalculation:
    """Persisted recalculation against the in-memory database."""

    async def test_incomplete_profile_writes_nothing(self, seeded_factory):
        service = AffinityService(seeded_factory)
        assert await service.recalculate_affinities(1) == []
        assert await _row_count(seeded_factory, person_id=1) == 0

    async def test_scores_every_practice_with_trait_weights(self, engine_facade, seeded_factory, answers):
        await engine_facade.submit_survey(1, answers(o=5, c=1, e=3))

        rows = await engine_facade.affinity.recalculate_affinities(1)
        by_practice = {r.practice_version_id: r.affinity for r in rows}
        # Practice 5 has no trait weights; unpublished practice 6 is still scored
        assert by_practice == {1: 33, 2: 17, 3: 100, 4: 0, 6: 100}

    async def test_recompute_is_idempotent(self, engine_facade, seeded_factory, answers):
        await engine_facade.submit_survey(1, answers(o=5, c=1, e=3))

        first = await engine_facade.affinity.recalculate_affinities(1)
        second = await engine_facade.affinity.recalculate_affinities(1)
        assert first == second
        assert await _row_count(seeded_factory, person_id=1) == len(first)

    async def test_storage_failure_rolls_back(self, seeded_factory):
        store = ProfileStore()
        async with seeded_factory() as session, session.begin():
            await store.save_profile(
                session, 2, ProfileScores(o=1.0, answered_items=1), recalculation_pending=True
            )

        store.upsert_person_affinities = AsyncMock(side_effect=SQLAlchemyError("disk full"))
        service = AffinityService(seeded_factory, store=store)

        with pytest.raises(StorageError):
            await service.recalculate_affinities(2)

        assert await _row_count(seeded_factory, person_id=2) == 0
        async with seeded_factory() as session:
            profile = await ProfileStore().get_profile(session, 2)
        assert profile.recalculation_pending is True

    async def test_recalculate_practice_after_weight_change(self, engine_facade, seeded_factory, answers):
        await engine_facade.submit_survey(1, answers(o=5, c=1, e=3))

        async with seeded_factory() as session, session.begin():
            practice = await session.get(Practice, 4)
            practice.trait_weights = {"c": -1.0}

        rows = await engine_facade.recalculate_practice(4)
        assert [(r.person_id, r.affinity) for r in rows] == [(1, 100)]

    async def test_practice_without_weights_loses_its_rows(self, engine_facade, seeded_factory, answers):
        await engine_facade.submit_survey(1, answers(o=5))
        assert await _row_count(seeded_factory, practice_version_id=1) == 1

        async with seeded_factory() as session, session.begin():
            practice = await session.get(Practice, 1)
            practice.trait_weights = None

        assert await engine_facade.recalculate_practice(1) == []
        assert await _row_count(seeded_factory, practice_version_id=1) == 0

    async def test_recalculate_unknown_practice(self, engine_facade):
        with pytest.raises(NotFoundError):
            await engine_facade.recalculate_practice(999)

    async def test_team_report_per_member(self, engine_facade, answers):
        await engine_facade.submit_survey(1, answers(o=5))

        report = await engine_facade.recalculate_team(1)
        assert report.total_members == 3
        assert report.successful == 1
        assert report.errors == 2
        outcome = {r.person_id: r for r in report.results}
        assert outcome[1].success and outcome[1].affinity_count == 5
        assert not outcome[2].success and outcome[2].error

    async def test_team_report_unknown_team(self, engine_facade):
        with pytest.raises(NotFoundError):
            await engine_facade.recalculate_team(42)
