"""
Live viewer counts ("N people are looking at this salon").
"""

import uuid

from fastapi import APIRouter, Depends

from altq.dependencies import get_runtime
from altq.services.runtime import Runtime

router = APIRouter()


@router.get("")
async def all_live_viewers(
    runtime: Runtime = Depends(get_runtime),
):
    """Viewer counts for every salon that currently has viewers."""
    return {"salons": runtime.viewers.all_counts()}


@router.get("/{salon_id}")
async def salon_live_viewers(
    salon_id: uuid.UUID,
    runtime: Runtime = Depends(get_runtime),
):
    return {
        "salon_id": str(salon_id),
        "count": runtime.viewers.viewer_count(str(salon_id)),
    }
