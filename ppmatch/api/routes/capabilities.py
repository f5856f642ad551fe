"""
PPMatch - Capability Routes
===========================

Unified capability rollups for approved technologies.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from ppmatch.api.dependencies import get_aggregator
from ppmatch.api.models import UnifiedCapabilityItem
from ppmatch.capabilities.aggregator import CapabilityAggregator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/capabilities", tags=["Capabilities"])


@router.get(
    "/unified",
    response_model=Dict[str, UnifiedCapabilityItem],
    summary="Unified capabilities",
    description="Per-technology project count, total years, most recent usage and narrative",
)
async def unified_capabilities(aggregator: CapabilityAggregator = Depends(get_aggregator)):
    return {
        technology_id: UnifiedCapabilityItem(
            project_count=rollup.project_count,
            total_years=round(rollup.total_experience_years, 2),
            recent_usage=rollup.most_recent_usage_date,
            narrative_text=rollup.narrative,
        )
        for technology_id, rollup in aggregator.unified_capabilities().items()
    }
