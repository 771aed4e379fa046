"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read lazily, but some modules build loggers at import time
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("CONTEXT_ENGINE_ENV", "test")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENAI_API_KEY"] = "test-openai-key"
    os.environ["CONTEXT_ENGINE_ENV"] = "test"
    os.environ["PERSIST_RAG_METRICS"] = "false"

    from app.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_process_state():
    """Drop process-wide caches between tests."""
    from app.core.embeddings import get_query_embedding_cache
    from app.core.metrics import get_operation_stats
    from app.core.rate_limiter import get_chat_rate_limiter
    from app.core.semantic_cache import get_memory_tier

    get_memory_tier.cache_clear()
    get_query_embedding_cache.cache_clear()
    get_chat_rate_limiter.cache_clear()
    get_operation_stats().reset()
    yield
