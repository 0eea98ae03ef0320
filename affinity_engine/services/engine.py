"""
Affinity Engine — Facade & Recalculation Queue

``AffinityEngine`` is the single entry point used by the HTTP layer and by
collaborators that own practices, teams and goals.  It wires the scoring
function, the store adapters, the calculators and the cache together:

  survey submitted → profile rescored from full history → affinities
  recalculated (inline or queued) → derived cache entries invalidated →
  next read recomputes and re-caches

Writes for one person are serialised through ``RecalculationQueue``; reads
take no locks.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Iterable, TypeVar

import structlog
from pydantic import TypeAdapter
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affinity_engine.config import Settings, get_settings
from affinity_engine.database import async_session_factory
from affinity_engine.exceptions import IncompleteProfileError, NotFoundError, StorageError
from affinity_engine.schemas.affinity import (
    AffinityAvailability,
    PersonAffinityView,
    PersonPracticeAffinityRow,
    TeamAffinitySummary,
    TeamRecalculationReport,
)
from affinity_engine.schemas.profile import ProfileStatus, ProfileView
from affinity_engine.schemas.recommendation import (
    Alternative,
    ComprehensiveReport,
    DifficultyFlagResponse,
    FlaggedPractice,
    Recommendation,
    TeamDashboard,
)
from affinity_engine.services.affinity_service import AffinityService
from affinity_engine.services.cache_service import AffinityCache, RedisCache
from affinity_engine.services.practice_directory import PracticeDirectory
from affinity_engine.services.profile_store import ProfileStore
from affinity_engine.services.recommendation_service import RecommendationService
from affinity_engine.services.scoring_service import ScoringService
from affinity_engine.services.team_service import TeamService

logger = structlog.get_logger("affinity_engine.engine")

T = TypeVar("T")

_PERSON_AFFINITY = TypeAdapter(PersonAffinityView)
_PERSON_AFFINITIES = TypeAdapter(list[PersonPracticeAffinityRow])
_TEAM_AFFINITY = TypeAdapter(TeamAffinitySummary)
_RECOMMENDATIONS = TypeAdapter(list[Recommendation])
_ALTERNATIVES = TypeAdapter(list[Alternative])
_REPORT = TypeAdapter(ComprehensiveReport)
_FLAGGED = TypeAdapter(list[FlaggedPractice])
_DASHBOARD = TypeAdapter(TeamDashboard)


class RecalculationQueue:
    """Per-person FIFO ordering for profile writes and recalculations.

    Each person gets an ``asyncio.Lock`` (waiters are woken in arrival
    order); different persons proceed in parallel.  A person's lock is
    dropped once nobody holds or waits on it.  Deferred work is kept in
    ``_tasks`` until it finishes so it can be drained on shutdown.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._holders: dict[int, int] = {}
        self._tasks: set[asyncio.Task] = set()

    @asynccontextmanager
    async def hold(self, person_id: int) -> AsyncIterator[None]:
        """Hold *person_id*'s lock for the duration of the block."""
        lock = self._locks.get(person_id)
        if lock is None:
            lock = self._locks[person_id] = asyncio.Lock()
        # Counts holders and waiters; lock.locked() is False between a
        # release and the next waiter waking up
        self._holders[person_id] = self._holders.get(person_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[person_id] -= 1
            if self._holders[person_id] == 0:
                del self._holders[person_id]
                del self._locks[person_id]

    async def run(self, person_id: int, work: Callable[[], Awaitable[T]]) -> T:
        async with self.hold(person_id):
            return await work()

    def submit(self, person_id: int, work: Callable[[], Awaitable[T]]) -> asyncio.Task:
        task = asyncio.create_task(self.run(person_id, work))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("queue.task_submitted", person_id=person_id, pending=len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("queue.task_cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("queue.task_failed", error=str(exc), error_type=type(exc).__name__)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def tracked_persons(self) -> int:
        return len(self._locks)

    async def drain(self) -> None:
        """Wait for every queued task, including ones queued while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AffinityEngine:
    """Facade over profile scoring, affinity, team and recommendation services."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        cache: AffinityCache | None = None,
        settings: Settings | None = None,
        recalculation_mode: str | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._session_factory = session_factory or async_session_factory
        self.cache = cache or AffinityCache(RedisCache())
        self.mode = recalculation_mode or self.settings.RECALCULATION_MODE
        self.queue = RecalculationQueue()

        self.store = ProfileStore()
        self.directory = PracticeDirectory()
        self.scoring = ScoringService()
        self.affinity = AffinityService(
            self._session_factory,
            self.store,
            self.directory,
            self.cache,
            neutral_score=self.settings.AFFINITY_NEUTRAL_SCORE,
        )
        self.teams = TeamService(self._session_factory, self.store, self.directory)
        self.recommendations = RecommendationService(
            self._session_factory, self.store, self.directory, self.cache
        )

    # ══════════════════════════════════════════════════════════════════════
    # Profiles
    # ══════════════════════════════════════════════════════════════════════

    async def submit_survey(
        self, person_id: int, responses: Iterable[tuple[int, int]]
    ) -> ProfileView:
        """Store answers, rescore the profile and recalculate affinities.

        The whole batch is validated before anything is written.  In
        ``deferred`` mode the returned view has ``recalculation_pending``
        set until the queued recalculation commits.
        """
        answers = self.scoring.validate_responses(responses)
        log = logger.bind(person_id=person_id, answers=len(answers), mode=self.mode)

        async with self.queue.hold(person_id):
            view = await self._store_and_score(person_id, answers)
            log.info("engine.survey_scored", version=view.version)

            if self.mode == "deferred":
                self.queue.submit(
                    person_id, lambda: self.affinity.recalculate_affinities(person_id)
                )
                return view

            await self.affinity.recalculate_affinities(person_id)

        return view.model_copy(update={"recalculation_pending": False})

    async def _store_and_score(
        self, person_id: int, answers: list[tuple[int, int]]
    ) -> ProfileView:
        try:
            async with self._session_factory() as session, session.begin():
                if not await self.directory.person_exists(session, person_id):
                    raise NotFoundError("Person", person_id)
                catalogue = await self.store.load_catalogue(session)
                known = [(item_id, result) for item_id, result in answers if item_id in catalogue]
                if len(known) < len(answers):
                    logger.info(
                        "engine.unknown_items_ignored",
                        person_id=person_id,
                        ignored=len(answers) - len(known),
                    )
                await self.store.append_responses(session, person_id, known)
                latest = await self.store.latest_responses(session, person_id)
                scores = self.scoring.compute_profile(latest, catalogue)
                profile = await self.store.save_profile(
                    session, person_id, scores, recalculation_pending=True
                )
                version = profile.version
                stored = await self.store.count_responses(session, person_id)
        except SQLAlchemyError as exc:
            logger.error("engine.survey_store_failed", person_id=person_id, error=str(exc))
            raise StorageError(f"Could not store survey for person {person_id}") from exc

        return ProfileView(
            person_id=person_id,
            status=scores.status,
            scores=scores.vector(),
            answered_items=scores.answered_items,
            has_data=scores.answered_items > 0,
            version=version,
            recalculation_pending=True,
            stored_responses=stored,
        )

    async def get_profile(self, person_id: int) -> ProfileView:
        async with self._session_factory() as session:
            profile = await self.store.get_profile(session, person_id)
            stored = await self.store.count_responses(session, person_id)

        if profile is None:
            return ProfileView(
                person_id=person_id,
                status=ProfileStatus.INCOMPLETE,
                stored_responses=stored,
            )
        return ProfileView(
            person_id=person_id,
            status=ProfileStatus(profile.status),
            scores=AffinityService._profile_vector(profile),
            answered_items=profile.answered_items,
            has_data=profile.answered_items > 0,
            version=profile.version,
            recalculation_pending=profile.recalculation_pending,
            stored_responses=stored,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Affinity reads
    # ══════════════════════════════════════════════════════════════════════

    async def get_person_affinity(
        self, person_id: int, practice_version_id: int
    ) -> PersonAffinityView:
        async def compute() -> PersonAffinityView:
            async with self._session_factory() as session:
                await self.directory.get_practice(session, practice_version_id)
                profile = await self.store.get_profile(session, person_id)
                if profile is None or profile.status != ProfileStatus.COMPLETE.value:
                    raise IncompleteProfileError(person_id)
                row = await self.store.get_affinity(session, person_id, practice_version_id)
                affinity = None if row is None else row.affinity

            return PersonAffinityView(
                person_id=person_id,
                practice_version_id=practice_version_id,
                affinity=affinity,
                availability=(
                    AffinityAvailability.NOT_COMPUTED
                    if affinity is None
                    else AffinityAvailability.AVAILABLE
                ),
            )

        try:
            return await self.cache.get_or_compute(
                self.cache.keys.person_affinity(person_id, practice_version_id),
                compute,
                self.cache.ttl_person,
                _PERSON_AFFINITY,
            )
        except IncompleteProfileError:
            return PersonAffinityView(
                person_id=person_id,
                practice_version_id=practice_version_id,
                availability=AffinityAvailability.PROFILE_INCOMPLETE,
            )

    async def get_person_affinities(self, person_id: int) -> list[PersonPracticeAffinityRow]:
        """Every stored practice affinity for *person_id*, by practice version id.

        Empty until the person has a complete profile.
        """
        async def compute() -> list[PersonPracticeAffinityRow]:
            async with self._session_factory() as session:
                if not await self.directory.person_exists(session, person_id):
                    raise NotFoundError("Person", person_id)
                rows = await self.store.list_person_affinities(session, person_id)
            return [PersonPracticeAffinityRow.model_validate(row) for row in rows]

        return await self.cache.get_or_compute(
            self.cache.keys.person_affinities(person_id),
            compute,
            self.cache.ttl_person,
            _PERSON_AFFINITIES,
        )

    async def get_team_affinity(
        self, member_ids: Iterable[int], practice_version_id: int
    ) -> TeamAffinitySummary:
        ids = sorted(set(member_ids))
        return await self.cache.get_or_compute(
            self.cache.keys.team_affinity(ids, practice_version_id),
            lambda: self.teams.team_affinity(ids, practice_version_id),
            self.cache.ttl_team,
            _TEAM_AFFINITY,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Recommendations
    # ══════════════════════════════════════════════════════════════════════

    async def get_recommendations(
        self,
        member_ids: Iterable[int],
        threshold: float | None = None,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
    ) -> list[Recommendation]:
        ids = sorted(set(member_ids))
        goals = sorted(set(goal_ids or ()))
        threshold = self._threshold(threshold)
        return await self.cache.get_or_compute(
            self.cache.keys.recommendations(ids, threshold, goals, context_id),
            lambda: self.recommendations.recommend_for_team(ids, threshold, goals, context_id),
            self.cache.ttl_recommendations,
            _RECOMMENDATIONS,
        )

    async def get_alternatives(
        self,
        practice_version_id: int,
        member_ids: Iterable[int],
        min_improvement: float | None = None,
    ) -> list[Alternative]:
        ids = sorted(set(member_ids))
        if min_improvement is None:
            min_improvement = self.settings.DEFAULT_MIN_IMPROVEMENT
        return await self.cache.get_or_compute(
            self.cache.keys.alternatives(practice_version_id, ids, min_improvement),
            lambda: self.recommendations.alternatives_for(
                practice_version_id, ids, min_improvement
            ),
            self.cache.ttl_recommendations,
            _ALTERNATIVES,
        )

    async def comprehensive_report(
        self,
        member_ids: Iterable[int],
        threshold: float | None = None,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
        include_alternatives: bool = True,
    ) -> ComprehensiveReport:
        ids = sorted(set(member_ids))
        goals = sorted(set(goal_ids or ()))
        threshold = self._threshold(threshold)
        return await self.cache.get_or_compute(
            self.cache.keys.comprehensive(ids, threshold, goals, context_id, include_alternatives),
            lambda: self.recommendations.comprehensive_report(
                ids, threshold, goals, context_id, include_alternatives
            ),
            self.cache.ttl_recommendations,
            _REPORT,
        )

    async def get_team_dashboard(
        self, team_id: int, threshold: float | None = None
    ) -> TeamDashboard:
        threshold = self._threshold(threshold)

        async def compute() -> TeamDashboard:
            async with self._session_factory() as session:
                member_ids = await self.directory.team_member_ids(session, team_id)
            report = await self.recommendations.comprehensive_report(member_ids, threshold)
            return TeamDashboard(team_id=team_id, report=report)

        return await self.cache.get_or_compute(
            self.cache.keys.team_dashboard(team_id, threshold),
            compute,
            self.cache.ttl_team,
            _DASHBOARD,
        )

    async def flag_practice_difficulty(
        self,
        person_id: int,
        practice_version_id: int,
        reason: str | None = None,
        context_id: int | None = None,
    ) -> DifficultyFlagResponse:
        return await self.recommendations.flag_practice_difficulty(
            person_id, practice_version_id, reason, context_id
        )

    async def flagged_practices_with_alternatives(
        self, member_ids: Iterable[int]
    ) -> list[FlaggedPractice]:
        ids = sorted(set(member_ids))
        return await self.cache.get_or_compute(
            self.cache.keys.flagged(ids),
            lambda: self.recommendations.flagged_practices_with_alternatives(ids),
            self.cache.ttl_recommendations,
            _FLAGGED,
        )

    def _threshold(self, threshold: float | None) -> float:
        return self.settings.DEFAULT_MIN_AFFINITY_THRESHOLD if threshold is None else threshold

    # ══════════════════════════════════════════════════════════════════════
    # Recalculation & collaborator hooks
    # ══════════════════════════════════════════════════════════════════════

    async def recalculate_affinities(self, person_id: int) -> list[PersonPracticeAffinityRow]:
        return await self.queue.run(
            person_id, lambda: self.affinity.recalculate_affinities(person_id)
        )

    async def recalculate_practice(
        self, practice_version_id: int
    ) -> list[PersonPracticeAffinityRow]:
        return await self.affinity.recalculate_practice(practice_version_id)

    async def recalculate_team(self, team_id: int) -> TeamRecalculationReport:
        return await self.affinity.recalculate_team(
            team_id,
            recalculate=lambda person_id: self.queue.run(
                person_id, lambda: self.affinity.recalculate_if_complete(person_id)
            ),
        )

    async def practice_changed(self, practice_version_id: int) -> list[PersonPracticeAffinityRow]:
        """Trait weights or publication of a practice version changed."""
        return await self.recalculate_practice(practice_version_id)

    async def team_membership_changed(self, team_id: int) -> None:
        await self.cache.invalidate_team(team_id)

    async def goal_links_changed(self) -> None:
        await self.cache.invalidate_recommendations()

    async def shutdown(self) -> None:
        await self.queue.drain()
        if isinstance(self.cache.backend, RedisCache):
            await self.cache.backend.close()
