"""
Affinity Engine — Team Aggregator

Combines stored member affinities for one practice version into team
statistics.  Members without a stored affinity are excluded from every
statistic rather than counted as zero; ``team_size`` still reports how many
distinct members were asked about.
"""

from __future__ import annotations

import statistics
from typing import Iterable, Mapping

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affinity_engine.database import async_session_factory
from affinity_engine.schemas.affinity import MemberScore, TeamAffinitySummary
from affinity_engine.services.practice_directory import PracticeDirectory
from affinity_engine.services.profile_store import ProfileStore

logger = structlog.get_logger("affinity_engine.team_service")


class TeamService:
    """Team-level affinity statistics."""

    DECIMALS: int = 2

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: ProfileStore | None = None,
        directory: PracticeDirectory | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self.store = store or ProfileStore()
        self.directory = directory or PracticeDirectory()

    async def team_affinity(
        self, member_ids: Iterable[int], practice_version_id: int
    ) -> TeamAffinitySummary:
        """Aggregate member affinities; unknown practice raises ``NotFoundError``."""
        ids = sorted(set(member_ids))
        async with self._session_factory() as session:
            await self.directory.get_practice(session, practice_version_id)
            affinities = await self.store.get_affinities(session, ids, practice_version_id)

        summary = self.summarise(practice_version_id, ids, affinities)
        logger.info(
            "team.affinity_aggregated",
            practice_version_id=practice_version_id,
            team_size=summary.team_size,
            member_count=summary.member_count,
            average=summary.average,
        )
        return summary

    @classmethod
    def summarise(
        cls,
        practice_version_id: int,
        member_ids: Iterable[int],
        affinities: Mapping[int, int],
    ) -> TeamAffinitySummary:
        """Pure aggregation over an already-loaded ``{person_id: affinity}`` map."""
        ids = sorted(set(member_ids))
        members = [
            MemberScore(person_id=pid, affinity=affinities[pid])
            for pid in ids
            if pid in affinities
        ]
        scores = [m.affinity for m in members]

        if not scores:
            return TeamAffinitySummary(
                practice_version_id=practice_version_id,
                team_size=len(ids),
            )

        sd = statistics.pstdev(scores) if len(scores) > 1 else 0.0
        return TeamAffinitySummary(
            practice_version_id=practice_version_id,
            average=round(statistics.fmean(scores), cls.DECIMALS),
            minimum=min(scores),
            maximum=max(scores),
            standard_deviation=round(sd, cls.DECIMALS),
            member_count=len(scores),
            team_size=len(ids),
            individual_scores=scores,
            members=members,
        )
