"""
Affinity Engine — Practice Directory

Read-only access to the collaborator-owned tables: practice versions and
their trait weights, goal and context links, persons and team membership.

Search filters are expressed as a typed :class:`PracticeFilter` and composed
into SQLAlchemy predicates, never into SQL strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import structlog
from sqlalchemy import Select, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from affinity_engine.exceptions import NotFoundError
from affinity_engine.models.person import Person, Team, TeamMember
from affinity_engine.models.practice import Practice, PracticeContext, PracticeGoal

logger = structlog.get_logger("affinity_engine.practice_directory")


@dataclass(frozen=True)
class PracticeFilter:
    """Candidate-set restriction for practice searches.

    ``goal_ids`` keeps practices linked to *any* listed goal.  ``context_id``
    keeps practices linked to that context or to no context at all.
    """

    published_only: bool = True
    goal_ids: tuple[int, ...] = ()
    context_id: int | None = None
    exclude_ids: tuple[int, ...] = ()
    require_trait_profile: bool = False

    @classmethod
    def build(
        cls,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
        **kwargs,
    ) -> "PracticeFilter":
        return cls(
            goal_ids=tuple(sorted(set(goal_ids or ()))),
            context_id=context_id,
            **kwargs,
        )

    def apply(self, stmt: Select) -> Select:
        if self.published_only:
            stmt = stmt.where(Practice.published.is_(True))
        if self.require_trait_profile:
            stmt = stmt.where(Practice.trait_weights.is_not(None))
        if self.exclude_ids:
            stmt = stmt.where(Practice.id.not_in(self.exclude_ids))
        if self.goal_ids:
            stmt = stmt.where(
                exists().where(
                    PracticeGoal.practice_version_id == Practice.id,
                    PracticeGoal.goal_id.in_(self.goal_ids),
                )
            )
        if self.context_id is not None:
            linked_to_context = exists().where(
                PracticeContext.practice_version_id == Practice.id,
                PracticeContext.context_id == self.context_id,
            )
            linked_to_any = exists().where(
                PracticeContext.practice_version_id == Practice.id,
            )
            stmt = stmt.where(linked_to_context | ~linked_to_any)
        return stmt


class PracticeDirectory:
    """Collaborator read contract used by the engine services."""

    # ── Practices ─────────────────────────────────────────────────────────

    async def get_practice(self, session: AsyncSession, practice_version_id: int) -> Practice:
        practice = await session.get(Practice, practice_version_id)
        if practice is None:
            logger.warning("directory.practice_not_found", practice_version_id=practice_version_id)
            raise NotFoundError("Practice version", practice_version_id)
        return practice

    async def list_practices(
        self, session: AsyncSession, practice_filter: PracticeFilter | None = None
    ) -> list[Practice]:
        """Return practices matching the filter, ordered by name then id."""
        stmt = (practice_filter or PracticeFilter()).apply(select(Practice))
        stmt = stmt.order_by(Practice.name, Practice.id)
        return list((await session.execute(stmt)).scalars().all())

    async def scored_practices(self, session: AsyncSession) -> list[Practice]:
        """Every practice version that declares trait weights."""
        return await self.list_practices(
            session, PracticeFilter(published_only=False, require_trait_profile=True)
        )

    # ── Goals ─────────────────────────────────────────────────────────────

    async def goal_ids_for(self, session: AsyncSession, practice_version_id: int) -> list[int]:
        stmt = (
            select(PracticeGoal.goal_id)
            .where(PracticeGoal.practice_version_id == practice_version_id)
            .order_by(PracticeGoal.goal_id)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def practices_sharing_goals(
        self,
        session: AsyncSession,
        goal_ids: Iterable[int],
        exclude_id: int,
    ) -> list[tuple[Practice, list[int]]]:
        """Published practices linked to at least one of *goal_ids*.

        Each practice is returned with the sorted list of goals it shares.
        """
        goals = tuple(sorted(set(goal_ids)))
        if not goals:
            return []

        practice_filter = PracticeFilter(goal_ids=goals, exclude_ids=(exclude_id,))
        practices = await self.list_practices(session, practice_filter)
        if not practices:
            return []

        link_stmt = select(PracticeGoal.practice_version_id, PracticeGoal.goal_id).where(
            PracticeGoal.practice_version_id.in_([p.id for p in practices]),
            PracticeGoal.goal_id.in_(goals),
        )
        shared: dict[int, list[int]] = {}
        for practice_version_id, goal_id in (await session.execute(link_stmt)).all():
            shared.setdefault(practice_version_id, []).append(goal_id)

        return [(p, sorted(shared.get(p.id, []))) for p in practices]

    # ── Persons & teams ───────────────────────────────────────────────────

    async def person_exists(self, session: AsyncSession, person_id: int) -> bool:
        return await session.get(Person, person_id) is not None

    async def team_member_ids(self, session: AsyncSession, team_id: int) -> list[int]:
        if await session.get(Team, team_id) is None:
            raise NotFoundError("Team", team_id)
        stmt = (
            select(TeamMember.person_id)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.person_id)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def team_ids_for_person(self, session: AsyncSession, person_id: int) -> list[int]:
        stmt = (
            select(TeamMember.team_id)
            .where(TeamMember.person_id == person_id)
            .order_by(TeamMember.team_id)
        )
        return list((await session.execute(stmt)).scalars().all())
