"""
Affinity Engine — Affinity Calculator

Maps a complete Big-Five profile and a practice version's trait weights onto
an integer affinity in [0, 100]:

  For each dimension with weight ``w`` the practice's ideal level is 1.0 when
  ``w > 0`` and 0.0 when ``w < 0``; closeness = 1 - |score - ideal|.

      affinity = round(100 × Σ|w|·closeness / Σ|w|)

  Empty or all-zero weights yield the configured neutral score.

Recalculation writes every row for a person (or for a practice) in a single
transaction and invalidates the derived cache entries afterwards.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affinity_engine.config import get_settings
from affinity_engine.database import async_session_factory
from affinity_engine.exceptions import AffinityEngineError, StorageError
from affinity_engine.models.profile import PersonalityProfile
from affinity_engine.schemas.affinity import (
    MemberRecalculation,
    PersonPracticeAffinityRow,
    TeamRecalculationReport,
)
from affinity_engine.schemas.profile import DIMENSIONS, ProfileStatus
from affinity_engine.services.cache_service import AffinityCache
from affinity_engine.services.practice_directory import PracticeDirectory
from affinity_engine.services.profile_store import ProfileStore

logger = structlog.get_logger("affinity_engine.affinity_service")


class AffinityService:
    """Deterministic profile → practice affinity scoring and recalculation."""

    MIN_AFFINITY: int = 0
    MAX_AFFINITY: int = 100
    MAX_WEIGHT: float = 1.0

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        store: ProfileStore | None = None,
        directory: PracticeDirectory | None = None,
        cache: AffinityCache | None = None,
        neutral_score: int | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self.store = store or ProfileStore()
        self.directory = directory or PracticeDirectory()
        self.cache = cache
        self.neutral_score = (
            get_settings().AFFINITY_NEUTRAL_SCORE if neutral_score is None else neutral_score
        )

    # ── Scoring ───────────────────────────────────────────────────────────

    def affinity(
        self,
        scores: Mapping[str, float],
        trait_weights: Mapping[str, float] | None,
    ) -> int:
        """Score one profile against one practice's trait weights."""
        weighted = 0.0
        total = 0.0
        for dim, weight in self._normalise_weights(trait_weights).items():
            if weight == 0:
                continue
            ideal = 1.0 if weight > 0 else 0.0
            score = min(1.0, max(0.0, float(scores.get(dim, 0.0))))
            closeness = 1.0 - abs(score - ideal)
            weighted += abs(weight) * closeness
            total += abs(weight)

        if total == 0:
            return self.neutral_score

        value = round(100 * weighted / total)
        return max(self.MIN_AFFINITY, min(self.MAX_AFFINITY, value))

    def _normalise_weights(self, trait_weights: Mapping[str, float] | None) -> dict[str, float]:
        # Keys may be stored upper-case ("O") by the practice editor
        weights: dict[str, float] = {}
        for key, value in (trait_weights or {}).items():
            dim = str(key).lower()
            if dim not in DIMENSIONS or isinstance(value, bool):
                continue
            try:
                weight = float(value)
            except (TypeError, ValueError):
                logger.warning("affinity.invalid_weight_ignored", dimension=key, weight=value)
                continue
            weights[dim] = max(-self.MAX_WEIGHT, min(self.MAX_WEIGHT, weight))
        return weights

    @staticmethod
    def _profile_vector(profile: PersonalityProfile) -> dict[str, float]:
        return {dim: getattr(profile, dim) for dim in DIMENSIONS}

    # ── Recalculation ─────────────────────────────────────────────────────

    async def recalculate_affinities(self, person_id: int) -> list[PersonPracticeAffinityRow]:
        """Recompute and persist every practice affinity for *person_id*.

        Returns ``[]`` without writing when the person has no complete
        profile.  Raises :class:`StorageError` if the write is rolled back.
        """
        rows = await self.recalculate_if_complete(person_id)
        return rows or []

    async def recalculate_if_complete(self, person_id: int) -> list[PersonPracticeAffinityRow] | None:
        log = logger.bind(person_id=person_id)
        try:
            async with self._session_factory() as session, session.begin():
                profile = await self.store.get_profile(session, person_id)
                if profile is None or profile.status != ProfileStatus.COMPLETE.value:
                    log.info("affinity.recalculation_skipped", reason="profile_incomplete")
                    return None

                vector = self._profile_vector(profile)
                practices = await self.directory.scored_practices(session)
                scores = {p.id: self.affinity(vector, p.trait_weights) for p in practices}

                await self.store.upsert_person_affinities(session, person_id, scores)
                await self.store.set_recalculation_pending(session, person_id, False)
                team_ids = await self.directory.team_ids_for_person(session, person_id)
        except SQLAlchemyError as exc:
            log.error("affinity.recalculation_failed", error=str(exc))
            raise StorageError(
                f"Could not store affinities for person {person_id}"
            ) from exc

        log.info("affinity.recalculated", practice_count=len(scores))

        if self.cache is not None:
            await self.cache.invalidate_person(person_id, team_ids)

        return [
            PersonPracticeAffinityRow(
                person_id=person_id,
                practice_version_id=practice_version_id,
                affinity=affinity,
            )
            for practice_version_id, affinity in sorted(scores.items())
        ]

    async def recalculate_practice(self, practice_version_id: int) -> list[PersonPracticeAffinityRow]:
        """Rescore one practice version for every person with a complete profile.

        A practice without trait weights is no longer scored, so its stored
        rows are removed.
        """
        log = logger.bind(practice_version_id=practice_version_id)
        scores: dict[int, int] = {}
        try:
            async with self._session_factory() as session, session.begin():
                practice = await self.directory.get_practice(session, practice_version_id)
                if practice.trait_weights is None:
                    removed = await self.store.delete_practice_affinities(
                        session, practice_version_id
                    )
                    log.info("affinity.practice_unscored", removed=removed)
                else:
                    for profile in await self.store.complete_profiles(session):
                        scores[profile.person_id] = self.affinity(
                            self._profile_vector(profile), practice.trait_weights
                        )
                    await self.store.upsert_practice_affinities(
                        session, practice_version_id, scores
                    )
        except SQLAlchemyError as exc:
            log.error("affinity.practice_recalculation_failed", error=str(exc))
            raise StorageError(
                f"Could not store affinities for practice version {practice_version_id}"
            ) from exc

        log.info("affinity.practice_recalculated", person_count=len(scores))

        if self.cache is not None:
            await self.cache.invalidate_practice(practice_version_id)

        return [
            PersonPracticeAffinityRow(
                person_id=person_id,
                practice_version_id=practice_version_id,
                affinity=affinity,
            )
            for person_id, affinity in sorted(scores.items())
        ]

    async def recalculate_team(
        self,
        team_id: int,
        recalculate: Callable[[int], Awaitable[list[PersonPracticeAffinityRow] | None]] | None = None,
    ) -> TeamRecalculationReport:
        """Recalculate each member independently and report per-member outcome.

        *recalculate* lets the caller route each member through its own
        per-person ordering; it defaults to this service's recalculation.
        """
        async with self._session_factory() as session:
            member_ids = await self.directory.team_member_ids(session, team_id)

        run = recalculate or self.recalculate_if_complete
        results: list[MemberRecalculation] = []
        for person_id in member_ids:
            try:
                rows = await run(person_id)
            except AffinityEngineError as exc:
                logger.warning(
                    "affinity.member_recalculation_failed",
                    team_id=team_id,
                    person_id=person_id,
                    error=str(exc),
                )
                results.append(MemberRecalculation(person_id=person_id, success=False, error=str(exc)))
                continue

            if rows is None:
                results.append(
                    MemberRecalculation(
                        person_id=person_id,
                        success=False,
                        error="Personality profile is not complete",
                    )
                )
            else:
                results.append(
                    MemberRecalculation(person_id=person_id, success=True, affinity_count=len(rows))
                )

        successful = sum(1 for r in results if r.success)
        logger.info(
            "affinity.team_recalculated",
            team_id=team_id,
            total_members=len(member_ids),
            successful=successful,
        )
        return TeamRecalculationReport(
            team_id=team_id,
            total_members=len(member_ids),
            successful=successful,
            errors=len(results) - successful,
            results=results,
        )
