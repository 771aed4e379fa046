"""Operation timing endpoint."""

from typing import Any, Dict, List

from fastapi import APIRouter

from app.core.metrics import get_operation_stats

router = APIRouter()


@router.get("/metrics")
async def operation_metrics() -> List[Dict[str, Any]]:
    """Count, success rate and latency percentiles per operation in this process."""
    return get_operation_stats().all_summaries()
