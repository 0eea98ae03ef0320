"""
Affinity Engine — Cache Layer

Cache-aside storage for derived read results on top of Redis:

  * ``CacheKeys`` renders every key as ``<prefix>:<operation>:<args>`` from a
    typed ``CacheKey`` so lookups and invalidation patterns are derived from
    the same code.  Member id sets are sorted and comma-fenced
    (``,1,2,3,``), which makes "every team key containing person 7" the glob
    ``apr:team_affinity:*,7,*``.
  * ``RedisCache`` is the ``CachePort`` backed by ``redis.asyncio``; pattern
    deletion walks the keyspace with SCAN and deletes in batches.
  * ``AffinityCache`` wraps the port.  Values are (de)serialised as JSON with
    a pydantic ``TypeAdapter``.  Backend failures never escape: reads fall
    through to live computation and the computed value is still returned.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Protocol, TypeVar

import structlog
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from affinity_engine.config import get_settings
from affinity_engine.exceptions import CacheError

logger = structlog.get_logger("affinity_engine.cache_service")

T = TypeVar("T")


# ──────────────────────────────────────────────────────────────────────────────
# Backend port
# ──────────────────────────────────────────────────────────────────────────────


class CachePort(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ping(self) -> bool: ...


class RedisCache:
    """``CachePort`` over ``redis.asyncio``.  Raises :class:`CacheError`."""

    SCAN_COUNT: int = 500

    def __init__(self, client: Any | None = None, url: str | None = None) -> None:
        self._client = client
        self._url = url

    def _get_client(self) -> Any:
        """Return the async Redis client, creating it on first call."""
        if self._client is None:
            import redis.asyncio as aioredis

            self._client = aioredis.from_url(
                self._url or get_settings().REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            logger.info("cache.redis_connected")
        return self._client

    async def get(self, key: str) -> str | None:
        try:
            return await self._get_client().get(key)
        except (RedisError, OSError) as exc:
            raise CacheError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._get_client().set(key, value, ex=ttl)
        except (RedisError, OSError) as exc:
            raise CacheError(f"SET {key} failed: {exc}") from exc

    async def delete_pattern(self, pattern: str) -> int:
        client = self._get_client()
        deleted = 0
        batch: list[str] = []
        try:
            async for key in client.scan_iter(match=pattern, count=self.SCAN_COUNT):
                batch.append(key)
                if len(batch) >= self.SCAN_COUNT:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except (RedisError, OSError) as exc:
            raise CacheError(f"delete of {pattern} failed: {exc}") from exc
        return deleted

    async def ping(self) -> bool:
        try:
            return bool(await self._get_client().ping())
        except (RedisError, OSError) as exc:
            raise CacheError(f"PING failed: {exc}") from exc

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("cache.redis_closed")


# ──────────────────────────────────────────────────────────────────────────────
# Keys
# ──────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CacheKey:
    operation: str
    args: tuple[str, ...]


class CacheKeys:
    """Canonical key and invalidation-pattern builder."""

    PERSON_AFFINITY = "person_affinity"
    TEAM_AFFINITY = "team_affinity"
    RECOMMENDATIONS = "recommendations"
    ALTERNATIVES = "alternatives"
    COMPREHENSIVE = "comprehensive"
    FLAGGED = "flagged"
    TEAM_DASHBOARD = "team_dashboard"

    ALL_PRACTICES = "all"

    LIST_OPERATIONS: tuple[str, ...] = (RECOMMENDATIONS, ALTERNATIVES, COMPREHENSIVE, FLAGGED)

    def __init__(self, prefix: str | None = None) -> None:
        self.prefix = prefix or get_settings().CACHE_PREFIX

    def render(self, key: CacheKey) -> str:
        return ":".join((self.prefix, key.operation, *key.args))

    # ── Argument canonicalisation ─────────────────────────────────────────

    @staticmethod
    def member_set(member_ids: Iterable[int]) -> str:
        ids = sorted(set(int(m) for m in member_ids))
        return "," + "".join(f"{m}," for m in ids)

    @staticmethod
    def id_list(ids: Iterable[int] | None) -> str:
        values = sorted(set(int(i) for i in ids or ()))
        return ",".join(str(v) for v in values) if values else "none"

    @staticmethod
    def optional(value: int | None) -> str:
        return "none" if value is None else str(int(value))

    @staticmethod
    def number(value: float) -> str:
        # repr round-trips exactly; 60 and 60.0 share a key, 60.0000001 does not
        return repr(float(value))

    # ── Lookup keys ───────────────────────────────────────────────────────

    def person_affinity(self, person_id: int, practice_version_id: int) -> CacheKey:
        return CacheKey(self.PERSON_AFFINITY, (str(person_id), str(practice_version_id)))

    def person_affinities(self, person_id: int) -> CacheKey:
        return CacheKey(self.PERSON_AFFINITY, (str(person_id), self.ALL_PRACTICES))

    def team_affinity(self, member_ids: Iterable[int], practice_version_id: int) -> CacheKey:
        return CacheKey(
            self.TEAM_AFFINITY, (str(practice_version_id), self.member_set(member_ids))
        )

    def recommendations(
        self,
        member_ids: Iterable[int],
        threshold: float,
        goal_ids: Iterable[int] | None = None,
        context_id: int | None = None,
    ) -> CacheKey:
        return CacheKey(
            self.RECOMMENDATIONS,
            (
                self.member_set(member_ids),
                self.number(threshold),
                self.id_list(goal_ids),
                self.optional(context_id),
            ),
        )

    def alternatives(
        self, practice_version_id: int, member_ids: Iterable[int], min_improvement: float
    ) -> CacheKey:
        return CacheKey(
            self.ALTERNATIVES,
            (str(practice_version_id), self.member_set(member_ids), self.number(min_improvement)),
        )

    def comprehensive(
        self,
        member_ids: Iterable[int],
        threshold: float,
        goal_ids: Iterable[int] | None,
        context_id: int | None,
        include_alternatives: bool,
    ) -> CacheKey:
        return CacheKey(
            self.COMPREHENSIVE,
            (
                self.member_set(member_ids),
                self.number(threshold),
                self.id_list(goal_ids),
                self.optional(context_id),
                "alt" if include_alternatives else "noalt",
            ),
        )

    def flagged(self, member_ids: Iterable[int]) -> CacheKey:
        return CacheKey(self.FLAGGED, (self.member_set(member_ids),))

    def team_dashboard(self, team_id: int, threshold: float) -> CacheKey:
        return CacheKey(self.TEAM_DASHBOARD, (str(team_id), self.number(threshold)))

    # ── Invalidation patterns ─────────────────────────────────────────────

    def person_affinity_pattern(self, person_id: int) -> str:
        return f"{self.prefix}:{self.PERSON_AFFINITY}:{person_id}:*"

    def practice_person_affinity_pattern(self, practice_version_id: int) -> str:
        return f"{self.prefix}:{self.PERSON_AFFINITY}:*:{practice_version_id}"

    def teams_containing_pattern(self, person_id: int) -> str:
        return f"{self.prefix}:{self.TEAM_AFFINITY}:*,{person_id},*"

    def person_affinity_lists_pattern(self) -> str:
        return f"{self.prefix}:{self.PERSON_AFFINITY}:*:{self.ALL_PRACTICES}"

    def practice_team_affinity_pattern(self, practice_version_id: int) -> str:
        return f"{self.prefix}:{self.TEAM_AFFINITY}:{practice_version_id}:*"

    def list_patterns(self) -> list[str]:
        return [f"{self.prefix}:{op}:*" for op in self.LIST_OPERATIONS]

    def team_dashboard_pattern(self, team_id: int | None = None) -> str:
        target = "*" if team_id is None else f"{team_id}:*"
        return f"{self.prefix}:{self.TEAM_DASHBOARD}:{target}"

    def everything_pattern(self) -> str:
        return f"{self.prefix}:*"


# ──────────────────────────────────────────────────────────────────────────────
# Cache-aside wrapper
# ──────────────────────────────────────────────────────────────────────────────


class AffinityCache:
    """Read-through cache with scoped invalidation."""

    def __init__(self, backend: CachePort, keys: CacheKeys | None = None) -> None:
        settings = get_settings()
        self.backend = backend
        self.keys = keys or CacheKeys(settings.CACHE_PREFIX)
        self.ttl_person = settings.CACHE_TTL_PERSON_AFFINITY
        self.ttl_team = settings.CACHE_TTL_TEAM
        self.ttl_recommendations = settings.CACHE_TTL_RECOMMENDATIONS

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[T]],
        ttl: int,
        adapter: TypeAdapter[T],
    ) -> T:
        rendered = self.keys.render(key)
        log = logger.bind(key=rendered)

        raw: str | None = None
        try:
            raw = await self.backend.get(rendered)
        except CacheError as exc:
            log.warning("cache.read_failed", error=str(exc))

        if raw is not None:
            try:
                value = adapter.validate_json(raw)
                log.debug("cache.hit")
                return value
            except PydanticValidationError:
                log.warning("cache.entry_corrupt")

        value = await compute()

        try:
            await self.backend.set(rendered, adapter.dump_json(value).decode(), ttl)
            log.debug("cache.stored", ttl=ttl)
        except CacheError as exc:
            log.warning("cache.write_failed", error=str(exc))
        return value

    async def _delete(self, patterns: Iterable[str]) -> int:
        deleted = 0
        for pattern in patterns:
            try:
                deleted += await self.backend.delete_pattern(pattern)
            except CacheError as exc:
                logger.warning("cache.invalidate_failed", pattern=pattern, error=str(exc))
        return deleted

    # ── Invalidation ──────────────────────────────────────────────────────

    async def invalidate_person(self, person_id: int, team_ids: Iterable[int] = ()) -> int:
        """Drop everything derived from *person_id*'s affinities."""
        patterns = [
            self.keys.person_affinity_pattern(person_id),
            self.keys.teams_containing_pattern(person_id),
            *self.keys.list_patterns(),
            *(self.keys.team_dashboard_pattern(team_id) for team_id in team_ids),
        ]
        deleted = await self._delete(patterns)
        logger.info("cache.person_invalidated", person_id=person_id, deleted=deleted)
        return deleted

    async def invalidate_practice(self, practice_version_id: int) -> int:
        patterns = [
            self.keys.practice_person_affinity_pattern(practice_version_id),
            self.keys.person_affinity_lists_pattern(),
            self.keys.practice_team_affinity_pattern(practice_version_id),
            *self.keys.list_patterns(),
            self.keys.team_dashboard_pattern(),
        ]
        deleted = await self._delete(patterns)
        logger.info(
            "cache.practice_invalidated",
            practice_version_id=practice_version_id,
            deleted=deleted,
        )
        return deleted

    async def invalidate_team(self, team_id: int) -> int:
        deleted = await self._delete([self.keys.team_dashboard_pattern(team_id)])
        logger.info("cache.team_invalidated", team_id=team_id, deleted=deleted)
        return deleted

    async def invalidate_recommendations(self) -> int:
        deleted = await self._delete(
            [*self.keys.list_patterns(), self.keys.team_dashboard_pattern()]
        )
        logger.info("cache.recommendations_invalidated", deleted=deleted)
        return deleted

    async def clear_all(self) -> int:
        deleted = await self._delete([self.keys.everything_pattern()])
        logger.info("cache.cleared", deleted=deleted)
        return deleted
