"""
Affinity Engine — Error taxonomy.

Services raise these; the API layer maps them onto HTTP status codes in
``affinity_engine.main``.
"""

from __future__ import annotations

from typing import Any


class AffinityEngineError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(AffinityEngineError):
    """Malformed input, rejected before anything is persisted."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class InvalidResponseError(ValidationError):
    """A survey result outside the 1-5 Likert scale."""

    def __init__(self, item_id: Any, result: Any) -> None:
        super().__init__(
            f"Survey result for item {item_id} must be an integer between 1 and 5, "
            f"got {result!r}",
            field=f"responses[item_id={item_id}].result",
        )
        self.item_id = item_id
        self.result = result


class NotFoundError(AffinityEngineError):
    """Unknown person, practice version or team."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class IncompleteProfileError(AffinityEngineError):
    """Affinity requested before the person's profile is complete.

    This is an expected state ("not yet available"), not a failure.
    """

    def __init__(self, person_id: int) -> None:
        super().__init__(f"Personality profile for person {person_id} is not complete")
        self.person_id = person_id


class StorageError(AffinityEngineError):
    """The relational store rejected or failed a write."""


class CacheError(AffinityEngineError):
    """The cache backend is unavailable.  Never escapes the cache layer."""
