"""
Affinity Engine — Recommendation Engine

Ranks practice versions for a set of team members and proposes alternatives
that pursue the same goals with a better team fit.

Ranking order is team average (descending), then practice name, then
practice version id, so equal averages always come back in the same order.
A practice is recommended iff its team average is at least the threshold;
every non-recommended practice carries a reason.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Iterable

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affinity_engine.config import get_settings
from affinity_engine.database import async_session_factory
from affinity_engine.exceptions import NotFoundError, StorageError
from affinity_engine.models.practice import Practice
from affinity_engine.schemas.affinity import TeamAffinitySummary
from affinity_engine.schemas.recommendation import (
    Alternative,
    ComprehensiveReport,
    DifficultyFlagResponse,
    FlaggedPractice,
    PracticeSummary,
    Recommendation,
    ReportSummary,
)
from affinity_engine.services.cache_service import AffinityCache
from affinity_engine.services.practice_directory import PracticeDirectory, PracticeFilter
from affinity_engine.services.profile_store import ProfileStore
from affinity_engine.services.team_service import TeamService

logger = structlog.get_logger("affinity_engine.recommendation_service")


def _rank_key(practice: PracticeSummary, average: float) -> tuple:
    return (-average, practice.name, practice.id)


class RecommendationService:
    """Team-level practice ranking, alternatives and difficulty flags."""

    FLAGGED_ALTERNATIVE_LIMIT: int = 3

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: ProfileStore | None = None,
        directory: PracticeDirectory | None = None,
        cache: AffinityCache | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory or async_session_factory
        self.store = store or ProfileStore()
        self.directory = directory or PracticeDirectory()
        self.cache = cache
        self.default_threshold = settings.DEFAULT_MIN_AFFINITY_THRESHOLD
        self.default_min_improvement = settings.DEFAULT_MIN_IMPROVEMENT
        self.low_individual_affinity = settings.LOW_INDIVIDUAL_AFFINITY

    # ══════════════════════════════════════════════════════════════════════
    # Ranking
    # ══════════════════════════════════════════════════════════════════════

    async def recommend_for_team(
        self,
        member_ids: Iterable[int],
        min_affinity_threshold: float | None = None,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
    ) -> list[Recommendation]:
        threshold = (
            self.default_threshold if min_affinity_threshold is None else min_affinity_threshold
        )
        ids = sorted(set(member_ids))
        log = logger.bind(member_count=len(ids), threshold=threshold)

        practice_filter = PracticeFilter.build(goal_ids=goal_ids, context_id=context_id)
        async with self._session_factory() as session:
            practices = await self.directory.list_practices(session, practice_filter)
            table = await self.store.get_affinity_table(
                session, ids, [p.id for p in practices]
            )

        recommendations = [
            self._recommendation(
                practice,
                TeamService.summarise(practice.id, ids, table.get(practice.id, {})),
                threshold,
            )
            for practice in practices
        ]
        recommendations.sort(key=lambda r: _rank_key(r.practice, r.team_affinity.average))

        log.info(
            "recommendations.ranked",
            candidates=len(recommendations),
            recommended=sum(1 for r in recommendations if r.recommended),
        )
        return recommendations

    def _recommendation(
        self,
        practice: Practice,
        summary: TeamAffinitySummary,
        threshold: float,
    ) -> Recommendation:
        recommended = summary.average >= threshold
        return Recommendation(
            practice=PracticeSummary.model_validate(practice),
            team_affinity=summary,
            recommended=recommended,
            reason=self._reason(summary, threshold, recommended),
        )

    def _reason(self, summary: TeamAffinitySummary, threshold: float, recommended: bool) -> str:
        if recommended:
            return f"High team affinity ({summary.average:g})"

        parts = [f"Team average affinity {summary.average:g} below threshold {threshold:g}"]
        if summary.member_count == 0:
            parts.append("no team member has a computed affinity yet")
        elif summary.minimum < self.low_individual_affinity:
            parts.append(f"Low individual affinity detected (min: {summary.minimum})")
        return "; ".join(parts)

    # ══════════════════════════════════════════════════════════════════════
    # Alternatives
    # ══════════════════════════════════════════════════════════════════════

    async def alternatives_for(
        self,
        practice_version_id: int,
        member_ids: Iterable[int],
        min_improvement: float | None = None,
    ) -> list[Alternative]:
        """Practices sharing a goal whose team average beats the original's.

        Raises ``NotFoundError`` for an unknown practice version.
        """
        improvement_floor = (
            self.default_min_improvement if min_improvement is None else min_improvement
        )
        ids = sorted(set(member_ids))

        async with self._session_factory() as session:
            await self.directory.get_practice(session, practice_version_id)
            goal_ids = await self.directory.goal_ids_for(session, practice_version_id)
            candidates = await self.directory.practices_sharing_goals(
                session, goal_ids, exclude_id=practice_version_id
            )
            table = await self.store.get_affinity_table(
                session, ids, [practice_version_id, *(p.id for p, _ in candidates)]
            )

        original = TeamService.summarise(practice_version_id, ids, table[practice_version_id])

        alternatives: list[Alternative] = []
        for practice, shared_goals in candidates:
            summary = TeamService.summarise(practice.id, ids, table.get(practice.id, {}))
            if summary.average < original.average + improvement_floor:
                continue
            improvement = round(summary.average - original.average, TeamService.DECIMALS)
            alternatives.append(
                Alternative(
                    practice=PracticeSummary.model_validate(practice),
                    team_affinity=summary,
                    original_average=original.average,
                    affinity_improvement=improvement,
                    shared_goal_ids=shared_goals,
                    reason=(
                        f"Shares {len(shared_goals)} goal(s) with "
                        f"{improvement:g} points higher team affinity"
                    ),
                )
            )

        alternatives.sort(key=lambda a: _rank_key(a.practice, a.team_affinity.average))
        logger.info(
            "recommendations.alternatives_found",
            practice_version_id=practice_version_id,
            shared_goals=len(goal_ids),
            alternatives=len(alternatives),
        )
        return alternatives

    # ══════════════════════════════════════════════════════════════════════
    # Comprehensive report
    # ══════════════════════════════════════════════════════════════════════

    async def comprehensive_report(
        self,
        member_ids: Iterable[int],
        threshold: float | None = None,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
        include_alternatives: bool = True,
    ) -> ComprehensiveReport:
        """High-affinity, low-affinity and alternative practices in one pass."""
        ids = sorted(set(member_ids))
        threshold = self.default_threshold if threshold is None else threshold

        ranked = await self.recommend_for_team(ids, threshold, goal_ids, context_id)
        recommended = [r for r in ranked if r.recommended]
        flagged_low = [r for r in ranked if not r.recommended]

        alternatives: dict[int, Alternative] = {}
        if include_alternatives:
            for low in flagged_low:
                for alt in await self.alternatives_for(low.practice.id, ids):
                    # Keep the largest improvement when several low practices
                    # lead to the same alternative
                    current = alternatives.get(alt.practice.id)
                    if current is None or alt.affinity_improvement > current.affinity_improvement:
                        alternatives[alt.practice.id] = alt

        alternative_list = sorted(
            alternatives.values(),
            key=lambda a: _rank_key(a.practice, a.team_affinity.average),
        )

        return ComprehensiveReport(
            member_ids=ids,
            threshold=threshold,
            generated_at=datetime.now(timezone.utc),
            recommended=recommended,
            flagged_low=flagged_low,
            alternatives=alternative_list,
            summary=ReportSummary(
                total_practices=len(ranked),
                recommended_count=len(recommended),
                low_count=len(flagged_low),
                alternative_count=len(alternative_list),
            ),
        )

    # ══════════════════════════════════════════════════════════════════════
    # Difficulty flags
    # ══════════════════════════════════════════════════════════════════════

    async def flag_practice_difficulty(
        self,
        person_id: int,
        practice_version_id: int,
        reason: str | None = None,
        context_id: int | None = None,
    ) -> DifficultyFlagResponse:
        log = logger.bind(person_id=person_id, practice_version_id=practice_version_id)
        try:
            async with self._session_factory() as session, session.begin():
                if not await self.directory.person_exists(session, person_id):
                    raise NotFoundError("Person", person_id)
                await self.directory.get_practice(session, practice_version_id)
                await self.store.upsert_difficulty_flag(
                    session, person_id, practice_version_id, reason, context_id
                )
        except SQLAlchemyError as exc:
            log.error("recommendations.flag_failed", error=str(exc))
            raise StorageError("Could not store practice difficulty flag") from exc

        log.info("recommendations.practice_flagged", context_id=context_id)

        if self.cache is not None:
            await self.cache.invalidate_recommendations()

        return DifficultyFlagResponse(
            person_id=person_id,
            practice_version_id=practice_version_id,
            reason=reason,
            context_id=context_id,
        )

    async def flagged_practices_with_alternatives(
        self, member_ids: Iterable[int]
    ) -> list[FlaggedPractice]:
        """Practices the members flagged as difficult, each with its top alternatives."""
        ids = sorted(set(member_ids))
        async with self._session_factory() as session:
            flags = await self.store.difficulty_flags(session, ids)
            reasons: dict[int, list[str]] = defaultdict(list)
            counts: dict[int, int] = defaultdict(int)
            for flag in flags:
                counts[flag.practice_version_id] += 1
                if flag.reason:
                    reasons[flag.practice_version_id].append(flag.reason)
            practices = {
                pv: await self.directory.get_practice(session, pv) for pv in sorted(counts)
            }

        flagged: list[FlaggedPractice] = []
        for pv, practice in practices.items():
            alternatives = await self.alternatives_for(pv, ids)
            flagged.append(
                FlaggedPractice(
                    practice=PracticeSummary.model_validate(practice),
                    flag_count=counts[pv],
                    reasons=reasons[pv],
                    alternatives=alternatives[: self.FLAGGED_ALTERNATIVE_LIMIT],
                )
            )

        flagged.sort(key=lambda f: (-f.flag_count, f.practice.name, f.practice.id))
        logger.info("recommendations.flagged_listed", member_count=len(ids), flagged=len(flagged))
        return flagged
