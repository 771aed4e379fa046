"""Operation timing rows (rag_performance_metrics)."""

from typing import Any

from supabase import Client

from app.core.logging import get_logger

logger = get_logger(__name__)

TABLE = "rag_performance_metrics"


def insert_metric(
    supabase: Client,
    operation: str,
    duration_ms: float,
    success: bool,
    user_id: str | None = None,
    query_length: int | None = None,
    context_length: int | None = None,
    docs_retrieved: int | None = None,
    docs_final: int | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """
    Persist one operation timing.

    Metrics are best-effort: failures are logged, never raised.

    Returns:
        True if the row was written
    """
    row = {
        "operation": operation,
        "duration_ms": int(round(duration_ms)),
        "success": success,
        "user_id": user_id,
        "query_length": query_length,
        "context_length": context_length,
        "docs_retrieved": docs_retrieved,
        "docs_final": docs_final,
        "metadata": metadata or {},
    }

    try:
        supabase.table(TABLE).insert(row).execute()
        return True

    except Exception as e:
        logger.warning(f"Failed to persist metric for {operation}: {e}")
        return False
