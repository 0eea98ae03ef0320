"""Tests for RecommendationService — ranking, alternatives, reports and flags.

Affinities after the ``surveyed`` fixture (person 1 / person 2):

    1 Daily Stand-up     33 / 100   avg 66.5   goal 1    context 10
    2 Pair Programming   17 / 100   avg 58.5   goal 1
    3 Retrospective     100 /  50   avg 75.0   goal 2
    4 Kanban Board        0 / 100   avg 50.0   goals 1,2 context 20
    5 Mob Programming     - /   -   avg  0.0   goal 1    (no trait weights)
"""
import pytest
import pytest_asyncio

from affinity_engine.exceptions import NotFoundError
from affinity_engine.services.recommendation_service import RecommendationService

TEAM = [1, 2]


@pytest_asyncio.fixture
async def surveyed(engine_facade, answers):
    await engine_facade.submit_survey(1, answers(o=5, c=1, e=3))
    await engine_facade.submit_survey(2, answers(o=1, c=5, e=5, a=5))
    return engine_facade


@pytest.fixture
def recommendation_service(surveyed):
    return surveyed.recommendations


@pytest.mark.asyncio
class TestRanking:
    """recommend_for_team ordering, filters and reasons."""

    async def test_sorted_by_average_then_name(self, recommendation_service):
        recs = await recommendation_service.recommend_for_team(TEAM, 60)
        assert [r.practice.id for r in recs] == [3, 1, 2, 4, 5]
        assert [r.team_affinity.average for r in recs] == [75.0, 66.5, 58.5, 50.0, 0.0]

    async def test_unpublished_practices_are_not_candidates(self, recommendation_service):
        recs = await recommendation_service.recommend_for_team(TEAM, 60)
        assert 6 not in {r.practice.id for r in recs}

    @pytest.mark.parametrize("threshold", [0, 30, 58.5, 60, 75, 100])
    async def test_threshold_consistency(self, recommendation_service, threshold):
        for rec in await recommendation_service.recommend_for_team(TEAM, threshold):
            if rec.recommended:
                assert rec.team_affinity.average >= threshold
            else:
                assert rec.reason

    async def test_reasons(self, recommendation_service):
        recs = {r.practice.id: r for r in await recommendation_service.recommend_for_team(TEAM, 60)}
        assert recs[3].recommended and "High team affinity" in recs[3].reason
        assert "Low individual affinity detected (min: 17)" in recs[2].reason
        assert "no team member has a computed affinity yet" in recs[5].reason

    async def test_goal_filter(self, recommendation_service):
        recs = await recommendation_service.recommend_for_team(TEAM, 60, goal_ids=[2])
        assert sorted(r.practice.id for r in recs) == [3, 4]

    async def test_context_filter_keeps_context_free_practices(self, recommendation_service):
        recs = await recommendation_service.recommend_for_team(TEAM, 60, context_id=10)
        assert sorted(r.practice.id for r in recs) == [1, 2, 3, 5]

    async def test_empty_candidate_set(self, recommendation_service):
        assert await recommendation_service.recommend_for_team(TEAM, 60, goal_ids=[999]) == []

    async def test_default_threshold_from_settings(self, recommendation_service):
        recs = await recommendation_service.recommend_for_team(TEAM)
        assert [r.practice.id for r in recs if r.recommended] == [3, 1]


@pytest.mark.asyncio
class TestAlternatives:
    """alternatives_for goal sharing and improvement floor."""

    async def test_alternatives_share_a_goal_and_improve(self, recommendation_service):
        alts = await recommendation_service.alternatives_for(4, TEAM, min_improvement=10)
        assert [a.practice.id for a in alts] == [3, 1]
        assert alts[0].shared_goal_ids == [2]
        assert alts[0].original_average == 50.0
        assert alts[0].affinity_improvement == 25.0
        assert alts[1].shared_goal_ids == [1]

    async def test_improvement_floor_is_inclusive(self, recommendation_service):
        alts = await recommendation_service.alternatives_for(4, TEAM, min_improvement=25)
        assert [a.practice.id for a in alts] == [3]

    async def test_unknown_practice(self, recommendation_service):
        with pytest.raises(NotFoundError):
            await recommendation_service.alternatives_for(999, TEAM, 10)

    async def test_zero_floor_without_members(self, seeded_factory):
        service = RecommendationService(seeded_factory)
        # every average is 0; unpublished practice 6 is never a candidate
        alts = await service.alternatives_for(5, [], min_improvement=0)
        assert {a.practice.id for a in alts} == {1, 2, 4}


@pytest.mark.asyncio
class TestComprehensiveReport:
    async def test_sections_and_summary(self, recommendation_service):
        report = await recommendation_service.comprehensive_report(TEAM, 60)
        assert [r.practice.id for r in report.recommended] == [3, 1]
        assert [r.practice.id for r in report.flagged_low] == [2, 4, 5]
        ids = [a.practice.id for a in report.alternatives]
        assert len(ids) == len(set(ids))
        assert ids == [3, 1, 2, 4]
        assert report.summary.total_practices == 5
        assert report.summary.recommended_count == 2
        assert report.summary.low_count == 3
        assert report.summary.alternative_count == 4

    async def test_without_alternatives(self, recommendation_service):
        report = await recommendation_service.comprehensive_report(
            TEAM, 60, include_alternatives=False
        )
        assert report.alternatives == []
        assert report.summary.alternative_count == 0


@pytest.mark.asyncio
class TestDifficultyFlags:
    async def test_flag_is_upserted(self, recommendation_service):
        await recommendation_service.flag_practice_difficulty(1, 4, "too rigid")
        await recommendation_service.flag_practice_difficulty(1, 4, "board never updated", 20)

        flagged = await recommendation_service.flagged_practices_with_alternatives(TEAM)
        assert len(flagged) == 1
        assert flagged[0].practice.id == 4
        assert flagged[0].flag_count == 1
        assert flagged[0].reasons == ["board never updated"]
        assert [a.practice.id for a in flagged[0].alternatives] == [3, 1]

    async def test_flags_counted_across_members(self, recommendation_service):
        await recommendation_service.flag_practice_difficulty(1, 5)
        await recommendation_service.flag_practice_difficulty(2, 5, "too noisy")
        await recommendation_service.flag_practice_difficulty(2, 2)

        flagged = await recommendation_service.flagged_practices_with_alternatives(TEAM)
        assert [(f.practice.id, f.flag_count) for f in flagged] == [(5, 2), (2, 1)]
        assert flagged[0].reasons == ["too noisy"]
        assert len(flagged[0].alternatives) <= 3

    async def test_unknown_person(self, recommendation_service):
        with pytest.raises(NotFoundError):
            await recommendation_service.flag_practice_difficulty(99, 4)

    async def test_unknown_practice(self, recommendation_service):
        with pytest.raises(NotFoundError):
            await recommendation_service.flag_practice_difficulty(1, 999)

    async def test_no_members_no_flags(self, recommendation_service):
        assert await recommendation_service.flagged_practices_with_alternatives([]) == []
