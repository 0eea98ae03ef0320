"""
Affinity Engine — Profile Store Adapter

Read/write contract over the ``survey_responses``, ``personality_profiles`` and
``person_practice_affinities`` tables.  Every method works inside the session
handed in by the caller; transaction boundaries belong to the services.
"""

from __future__ import annotations

from typing import Iterable, Mapping

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from affinity_engine.models.affinity import PersonPracticeAffinity
from affinity_engine.models.practice import PracticeDifficultyFlag
from affinity_engine.models.profile import PersonalityProfile
from affinity_engine.models.survey import SurveyItem, SurveyResponse
from affinity_engine.schemas.profile import DIMENSIONS, ProfileScores, ProfileStatus
from affinity_engine.services.scoring_service import CatalogueItem

logger = structlog.get_logger("affinity_engine.profile_store")


class ProfileStore:
    """Persistence adapter consumed by the scoring and affinity services."""

    # ── Questionnaire ─────────────────────────────────────────────────────

    async def load_catalogue(self, session: AsyncSession) -> dict[int, CatalogueItem]:
        result = await session.execute(select(SurveyItem))
        return {
            item.id: CatalogueItem(
                item_id=item.id,
                dimension=item.dimension.lower(),
                reverse_keyed=bool(item.reverse_keyed),
            )
            for item in result.scalars().all()
        }

    async def append_responses(
        self,
        session: AsyncSession,
        person_id: int,
        answers: Iterable[tuple[int, int]],
    ) -> int:
        """Append new answer rows; history is never rewritten."""
        count = 0
        for item_id, result in answers:
            session.add(
                SurveyResponse(person_id=person_id, item_id=item_id, result=result)
            )
            count += 1
        await session.flush()
        logger.info("store.responses_appended", person_id=person_id, count=count)
        return count

    async def latest_responses(
        self, session: AsyncSession, person_id: int
    ) -> list[tuple[int, int]]:
        """Return ``(item_id, result)`` for the newest answer to each item."""
        stmt = (
            select(SurveyResponse.item_id, SurveyResponse.result)
            .where(SurveyResponse.person_id == person_id)
            .order_by(SurveyResponse.id)
        )
        latest: dict[int, int] = {}
        for item_id, result in (await session.execute(stmt)).all():
            latest[item_id] = result
        return sorted(latest.items())

    async def count_responses(self, session: AsyncSession, person_id: int) -> int:
        stmt = select(func.count(SurveyResponse.id)).where(
            SurveyResponse.person_id == person_id
        )
        return int((await session.execute(stmt)).scalar_one())

    # ── Profiles ──────────────────────────────────────────────────────────

    async def get_profile(
        self, session: AsyncSession, person_id: int
    ) -> PersonalityProfile | None:
        stmt = select(PersonalityProfile).where(PersonalityProfile.person_id == person_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def save_profile(
        self,
        session: AsyncSession,
        person_id: int,
        scores: ProfileScores,
        recalculation_pending: bool = False,
    ) -> PersonalityProfile:
        """Upsert the person's single profile row, bumping its version."""
        profile = await self.get_profile(session, person_id)
        if profile is None:
            profile = PersonalityProfile(person_id=person_id, version=1)
            session.add(profile)
        else:
            profile.version = (profile.version or 0) + 1

        for dim in DIMENSIONS:
            setattr(profile, dim, getattr(scores, dim))
        profile.status = scores.status.value
        profile.answered_items = scores.answered_items
        profile.recalculation_pending = recalculation_pending

        await session.flush()
        logger.info(
            "store.profile_saved",
            person_id=person_id,
            version=profile.version,
            status=profile.status,
            recalculation_pending=recalculation_pending,
        )
        return profile

    async def set_recalculation_pending(
        self, session: AsyncSession, person_id: int, pending: bool
    ) -> None:
        profile = await self.get_profile(session, person_id)
        if profile is not None and profile.recalculation_pending != pending:
            profile.recalculation_pending = pending
            await session.flush()

    async def complete_profiles(self, session: AsyncSession) -> list[PersonalityProfile]:
        stmt = (
            select(PersonalityProfile)
            .where(PersonalityProfile.status == ProfileStatus.COMPLETE.value)
            .order_by(PersonalityProfile.person_id)
        )
        return list((await session.execute(stmt)).scalars().all())

    # ── Affinities ────────────────────────────────────────────────────────

    async def get_affinity(
        self, session: AsyncSession, person_id: int, practice_version_id: int
    ) -> PersonPracticeAffinity | None:
        stmt = select(PersonPracticeAffinity).where(
            PersonPracticeAffinity.person_id == person_id,
            PersonPracticeAffinity.practice_version_id == practice_version_id,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_affinities(
        self,
        session: AsyncSession,
        person_ids: Iterable[int],
        practice_version_id: int,
    ) -> dict[int, int]:
        """Map person id -> stored affinity; members without a row are absent."""
        ids = list(person_ids)
        if not ids:
            return {}
        stmt = select(
            PersonPracticeAffinity.person_id, PersonPracticeAffinity.affinity
        ).where(
            PersonPracticeAffinity.practice_version_id == practice_version_id,
            PersonPracticeAffinity.person_id.in_(ids),
        )
        return {pid: affinity for pid, affinity in (await session.execute(stmt)).all()}

    async def get_affinity_table(
        self,
        session: AsyncSession,
        person_ids: Iterable[int],
        practice_version_ids: Iterable[int],
    ) -> dict[int, dict[int, int]]:
        """Map practice version id -> {person id -> affinity} in one query."""
        ids = list(person_ids)
        practice_ids = list(practice_version_ids)
        table: dict[int, dict[int, int]] = {pv: {} for pv in practice_ids}
        if not ids or not practice_ids:
            return table
        stmt = select(
            PersonPracticeAffinity.practice_version_id,
            PersonPracticeAffinity.person_id,
            PersonPracticeAffinity.affinity,
        ).where(
            PersonPracticeAffinity.practice_version_id.in_(practice_ids),
            PersonPracticeAffinity.person_id.in_(ids),
        )
        for practice_version_id, person_id, affinity in (await session.execute(stmt)).all():
            table[practice_version_id][person_id] = affinity
        return table

    async def delete_practice_affinities(
        self, session: AsyncSession, practice_version_id: int
    ) -> int:
        result = await session.execute(
            delete(PersonPracticeAffinity).where(
                PersonPracticeAffinity.practice_version_id == practice_version_id
            )
        )
        return result.rowcount or 0

    async def list_person_affinities(
        self, session: AsyncSession, person_id: int
    ) -> list[PersonPracticeAffinity]:
        stmt = (
            select(PersonPracticeAffinity)
            .where(PersonPracticeAffinity.person_id == person_id)
            .order_by(PersonPracticeAffinity.practice_version_id)
        )
        return list((await session.execute(stmt)).scalars().all())

    async def upsert_person_affinities(
        self,
        session: AsyncSession,
        person_id: int,
        scores: Mapping[int, int],
    ) -> list[PersonPracticeAffinity]:
        """Write one row per practice version for *person_id* (update or insert)."""
        existing = {
            row.practice_version_id: row
            for row in await self.list_person_affinities(session, person_id)
        }
        rows: list[PersonPracticeAffinity] = []
        for practice_version_id in sorted(scores):
            row = existing.get(practice_version_id)
            if row is None:
                row = PersonPracticeAffinity(
                    person_id=person_id, practice_version_id=practice_version_id
                )
                session.add(row)
            row.affinity = scores[practice_version_id]
            rows.append(row)
        await session.flush()
        return rows

    async def upsert_practice_affinities(
        self,
        session: AsyncSession,
        practice_version_id: int,
        scores: Mapping[int, int],
    ) -> list[PersonPracticeAffinity]:
        """Write one row per person for a single practice version."""
        stmt = select(PersonPracticeAffinity).where(
            PersonPracticeAffinity.practice_version_id == practice_version_id
        )
        existing = {
            row.person_id: row for row in (await session.execute(stmt)).scalars().all()
        }
        rows: list[PersonPracticeAffinity] = []
        for person_id in sorted(scores):
            row = existing.get(person_id)
            if row is None:
                row = PersonPracticeAffinity(
                    person_id=person_id, practice_version_id=practice_version_id
                )
                session.add(row)
            row.affinity = scores[person_id]
            rows.append(row)
        await session.flush()
        return rows

    # ── Difficulty flags ──────────────────────────────────────────────────

    async def upsert_difficulty_flag(
        self,
        session: AsyncSession,
        person_id: int,
        practice_version_id: int,
        reason: str | None,
        context_id: int | None,
    ) -> PracticeDifficultyFlag:
        """One flag per (person, practice version); re-flagging overwrites it."""
        stmt = select(PracticeDifficultyFlag).where(
            PracticeDifficultyFlag.person_id == person_id,
            PracticeDifficultyFlag.practice_version_id == practice_version_id,
        )
        flag = (await session.execute(stmt)).scalar_one_or_none()
        if flag is None:
            flag = PracticeDifficultyFlag(
                person_id=person_id, practice_version_id=practice_version_id
            )
            session.add(flag)
        flag.reason = reason
        flag.context_id = context_id
        await session.flush()
        return flag

    async def difficulty_flags(
        self, session: AsyncSession, person_ids: Iterable[int]
    ) -> list[PracticeDifficultyFlag]:
        ids = list(person_ids)
        if not ids:
            return []
        stmt = (
            select(PracticeDifficultyFlag)
            .where(PracticeDifficultyFlag.person_id.in_(ids))
            .order_by(PracticeDifficultyFlag.practice_version_id, PracticeDifficultyFlag.id)
        )
        return list((await session.execute(stmt)).scalars().all())
