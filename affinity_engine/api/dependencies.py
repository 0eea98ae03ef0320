"""
Affinity Engine — Shared API dependencies

One ``AffinityEngine`` per process, constructed on first use so that importing
the API does not open a Redis connection.
"""

from __future__ import annotations

from affinity_engine.exceptions import ValidationError
from affinity_engine.services.engine import AffinityEngine

# ── Engine singleton ─────────────────────────────────────────────────────────

_engine: AffinityEngine | None = None


def get_engine() -> AffinityEngine:
    global _engine
    if _engine is None:
        _engine = AffinityEngine()
    return _engine


async def shutdown_engine() -> None:
    global _engine
    if _engine is not None:
        await _engine.shutdown()
        _engine = None


def parse_id_list(raw: str | None, field: str) -> list[int]:
    """Parse a comma-separated id list such as ``"3,1,2"`` from a query string."""
    if raw is None or not raw.strip():
        return []
    ids: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            ids.append(int(part))
        except ValueError:
            raise ValidationError(f"{field} contains a non-integer id: {part!r}", field=field) from None
    return ids
