"""
Affinity Engine — Big-Five Scoring Function

Turns a person's Likert answers into five normalised dimension scores:
  1. Validate every result (integer in [1, 5]); reject the whole batch on error
  2. Keep the latest answer per questionnaire item
  3. Bucket answers by the dimension their catalogue item is tagged with
  4. Normalise each answer to [0, 1] via (result - 1) / 4, reversing
     reverse-keyed items
  5. Average each bucket (empty bucket -> 0.0) and clamp to [0, 1]

The function is pure: the caller supplies the catalogue and the answers, and
identical answer sets always produce bit-identical scores regardless of order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

import structlog

from affinity_engine.exceptions import InvalidResponseError
from affinity_engine.schemas.profile import DIMENSIONS, ProfileScores, ProfileStatus

logger = structlog.get_logger("affinity_engine.scoring_service")


@dataclass(frozen=True)
class CatalogueItem:
    """Scoring metadata for one questionnaire item."""

    item_id: int
    dimension: str
    reverse_keyed: bool = False


class ScoringService:
    """Stateless Big-Five scoring.

    Scale bounds are class attributes so they can be introspected in tests.
    """

    DIMENSIONS: tuple[str, ...] = DIMENSIONS
    MIN_RESULT: int = 1
    MAX_RESULT: int = 5

    # ── Public API ──────────────────────────────────────────────────

    def validate_responses(
        self, responses: Iterable[tuple[int, int]]
    ) -> list[tuple[int, int]]:
        """Return the answers as a list, raising on the first bad result.

        Nothing is persisted by the caller unless every answer passes, so a
        single bad value rejects the batch atomically.
        """
        validated: list[tuple[int, int]] = []
        for item_id, result in responses:
            if not self._is_valid_result(result):
                logger.warning(
                    "scoring.invalid_result", item_id=item_id, result=result
                )
                raise InvalidResponseError(item_id, result)
            validated.append((int(item_id), int(result)))
        return validated

    def compute_profile(
        self,
        responses: Iterable[tuple[int, int]],
        catalogue: Mapping[int, CatalogueItem],
    ) -> ProfileScores:
        """Compute the five dimension scores for one person.

        Parameters
        ----------
        responses:
            ``(item_id, result)`` pairs.  When an item appears more than once
            the last occurrence is the latest answer and wins.
        catalogue:
            Mapping of item id to :class:`CatalogueItem`.  Answers to items
            outside the catalogue are ignored.

        Returns
        -------
        ProfileScores
            Always ``complete``.  An empty answer set yields all-zero scores
            with ``answered_items == 0``.
        """
        answers = self.validate_responses(responses)

        latest: dict[int, int] = {}
        for item_id, result in answers:
            latest[item_id] = result

        buckets: dict[str, list[float]] = {dim: [] for dim in self.DIMENSIONS}
        answered = 0
        # Sorted item order keeps float summation identical for any input order
        for item_id in sorted(latest):
            item = catalogue.get(item_id)
            if item is None or item.dimension not in buckets:
                logger.debug("scoring.unknown_item_ignored", item_id=item_id)
                continue
            normalised = self._normalise(latest[item_id])
            if item.reverse_keyed:
                normalised = 1.0 - normalised
            buckets[item.dimension].append(normalised)
            answered += 1

        scores = {
            dim: self._clamp(sum(values) / len(values)) if values else 0.0
            for dim, values in buckets.items()
        }

        logger.info(
            "scoring.profile_computed",
            answered_items=answered,
            ignored_items=len(latest) - answered,
            **scores,
        )

        return ProfileScores(
            **scores,
            status=ProfileStatus.COMPLETE,
            answered_items=answered,
        )

    # ── Internal helpers ────────────────────────────────────────────

    def _is_valid_result(self, result: object) -> bool:
        # bool is an int subclass; True/False are not Likert answers
        if isinstance(result, bool) or not isinstance(result, int):
            return False
        return self.MIN_RESULT <= result <= self.MAX_RESULT

    def _normalise(self, result: int) -> float:
        return (result - self.MIN_RESULT) / (self.MAX_RESULT - self.MIN_RESULT)

    @staticmethod
    def _clamp(value: float) -> float:
        return max(0.0, min(1.0, value))
