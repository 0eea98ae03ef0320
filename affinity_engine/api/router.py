"""
Affinity Engine — Main API Router

Aggregates all sub-routers under a single prefix so that
``affinity_engine.main`` can mount the entire API surface with one
``include_router`` call.
"""

from fastapi import APIRouter

from affinity_engine.api import affinity, recommendations

router = APIRouter()

router.include_router(affinity.router, prefix="/affinity", tags=["Affinity"])
router.include_router(recommendations.router, prefix="/recommendations", tags=["Recommendations"])
