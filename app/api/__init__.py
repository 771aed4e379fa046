"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import cache, chat, insights, knowledge, metrics

router = APIRouter()

# Chat pipeline
router.include_router(chat.router, tags=["chat"])

# Knowledge store ingestion, search and deletion
router.include_router(knowledge.router, tags=["knowledge"])

# AI insight profiles
router.include_router(insights.router, tags=["insights"])

# Semantic cache administration
router.include_router(cache.router, tags=["cache"])

# Operation timings
router.include_router(metrics.router, tags=["metrics"])
