"""Tests for TeamService — team-level affinity statistics."""
import pytest

from affinity_engine.exceptions import NotFoundError
from affinity_engine.services.team_service import TeamService


class TestSummarise:
    """Pure aggregation over loaded affinities."""

    def test_identical_scores_degenerate(self):
        summary = TeamService.summarise(7, [1, 2, 3], {1: 64, 2: 64, 3: 64})
        assert summary.average == summary.minimum == summary.maximum == 64
        assert summary.standard_deviation == 0.0

    def test_missing_members_are_excluded_not_zero_filled(self):
        summary = TeamService.summarise(7, [1, 2, 3], {1: 80, 3: 40})
        assert summary.member_count == 2
        assert summary.team_size == 3
        assert summary.average == 60.0
        assert summary.minimum == 40
        assert summary.individual_scores == [80, 40]
        assert [m.person_id for m in summary.members] == [1, 3]

    def test_population_standard_deviation(self):
        summary = TeamService.summarise(7, [1, 2], {1: 80, 2: 40})
        assert summary.standard_deviation == 20.0

    def test_average_rounded_to_two_decimals(self):
        summary = TeamService.summarise(7, [1, 2, 3], {1: 1, 2: 2, 3: 2})
        assert summary.average == 1.67

    def test_empty_member_set(self):
        summary = TeamService.summarise(7, [], {})
        assert summary.average == 0.0
        assert summary.minimum == summary.maximum == 0
        assert summary.member_count == 0
        assert summary.team_size == 0
        assert summary.individual_scores == []

    def test_no_contributors_keeps_team_size(self):
        summary = TeamService.summarise(7, [4, 5], {})
        assert summary.member_count == 0
        assert summary.team_size == 2

    def test_duplicate_member_ids_counted_once(self):
        summary = TeamService.summarise(7, [2, 1, 2, 1], {1: 50, 2: 70})
        assert summary.team_size == 2
        assert summary.individual_scores == [50, 70]

    def test_single_member_has_zero_deviation(self):
        summary = TeamService.summarise(7, [1], {1: 42})
        assert summary.standard_deviation == 0.0
        assert summary.average == 42.0


@pytest.mark.asyncio
class TestTeamAffinity:
    """Aggregation over stored rows."""

    async def test_unknown_practice(self, seeded_factory):
        with pytest.raises(NotFoundError):
            await TeamService(seeded_factory).team_affinity([1, 2], 999)

    async def test_reads_stored_affinities(self, engine_facade, seeded_factory, answers):
        await engine_facade.submit_survey(1, answers(o=5, c=1, e=3))
        await engine_facade.submit_survey(2, answers(o=1, c=5, e=5, a=5))

        summary = await TeamService(seeded_factory).team_affinity([2, 1, 3], 3)
        assert summary.individual_scores == [100, 50]
        assert summary.member_count == 2
        assert summary.team_size == 3
        assert summary.average == 75.0
