"""Shared pytest fixtures for the affinity engine tests."""
import os

# Settings are read once on first import; point them at in-process backends.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from affinity_engine.database import Base, build_engine
from affinity_engine.models import (
    Goal,
    Person,
    Practice,
    PracticeContext,
    PracticeGoal,
    SurveyItem,
    Team,
    TeamMember,
)
from affinity_engine.services.cache_service import AffinityCache, CacheKeys, RedisCache
from affinity_engine.services.engine import AffinityEngine
from affinity_engine.services.scoring_service import CatalogueItem


# ── Survey catalogue ─────────────────────────────────────────────────────────

SURVEY_ITEMS = [
    # (id, dimension, reverse_keyed)
    (1, "c", False),
    (2, "e", False),
    (3, "n", True),
    (4, "o", False),
    (5, "a", False),
]

# ── Practice versions ────────────────────────────────────────────────────────
# id, name, trait_weights, goal ids, context ids, published

PRACTICES = [
    (1, "Daily Stand-up", {"e": 1.0, "c": 0.5}, [1], [10], True),
    (2, "Pair Programming", {"a": 1.0, "e": 0.5}, [1], [], True),
    (3, "Retrospective", {"o": 1.0, "n": -1.0}, [2], [], True),
    (4, "Kanban Board", {"c": 1.0}, [1, 2], [20], True),
    (5, "Mob Programming", None, [1], [], True),
    (6, "Experimental Practice", {"o": 1.0}, [1], [], False),
]

# team id -> member ids
TEAMS = {1: [1, 2, 3], 2: [3, 4]}
PERSON_IDS = [1, 2, 3, 4, 5]


@pytest.fixture
def catalogue():
    return {
        item_id: CatalogueItem(item_id=item_id, dimension=dim, reverse_keyed=rev)
        for item_id, dim, rev in SURVEY_ITEMS
    }


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory SQLite database per test."""
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def seeded_factory(session_factory):
    """Session factory over a database holding persons, teams, practices and items."""
    async with session_factory() as session, session.begin():
        session.add_all(Person(id=pid, name=f"Person {pid}") for pid in PERSON_IDS)
        session.add_all(Team(id=tid, name=f"Team {tid}") for tid in TEAMS)
        session.add_all(Goal(id=gid, name=f"Goal {gid}") for gid in (1, 2))
        session.add_all(
            SurveyItem(id=item_id, content=f"Item {item_id}", dimension=dim, reverse_keyed=rev)
            for item_id, dim, rev in SURVEY_ITEMS
        )
        await session.flush()

        for pv, name, weights, goals, contexts, published in PRACTICES:
            session.add(
                Practice(
                    id=pv,
                    practice_id=pv,
                    name=name,
                    version_name="v1.0",
                    published=published,
                    trait_weights=weights,
                )
            )
        await session.flush()

        for pv, _name, _weights, goals, contexts, _published in PRACTICES:
            session.add_all(PracticeGoal(practice_version_id=pv, goal_id=g) for g in goals)
            session.add_all(
                PracticeContext(practice_version_id=pv, context_id=c) for c in contexts
            )
        for tid, members in TEAMS.items():
            session.add_all(TeamMember(team_id=tid, person_id=pid) for pid in members)
    return session_factory


@pytest.fixture
def redis_client():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return AffinityCache(RedisCache(client=redis_client), CacheKeys("apr"))


@pytest.fixture
def engine_facade(seeded_factory, cache):
    return AffinityEngine(session_factory=seeded_factory, cache=cache, recalculation_mode="sync")


@pytest.fixture
def answers():
    """Build ``(item_id, result)`` pairs from dimension keywords, e.g. ``answers(o=5)``."""
    item_for = {dim: item_id for item_id, dim, _rev in SURVEY_ITEMS}

    def build(**by_dimension):
        return [(item_for[dim], result) for dim, result in by_dimension.items()]

    return build
