"""Configuration management for the Context Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Environment
    CONTEXT_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, test, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")
    EMBEDDING_CACHE_TTL_SECONDS: int = Field(
        default=300, description="Lifetime of a cached query embedding"
    )
    EMBEDDING_CACHE_MAX_ENTRIES: int = Field(
        default=1000, description="Query embeddings held in process"
    )

    # Answer generation
    CHAT_MODEL: str = Field(default="gpt-4o-mini", description="Model for chat answers")
    CHAT_TEMPERATURE: float = Field(default=0.7, description="Temperature for chat answers")
    CHAT_MAX_TOKENS: int = Field(default=500, description="Max tokens per chat answer")

    # Insight extraction
    INSIGHTS_MODEL: str = Field(default="gpt-4o-mini", description="Model for insight extraction")
    INSIGHTS_MAX_TOKENS: int = Field(default=2000, description="Max tokens for insight extraction")
    METADATA_MAX_TOKENS: int = Field(default=500, description="Max tokens for metadata extraction")
    REANALYSIS_INTERVAL_MINUTES: int = Field(
        default=60, description="Minimum minutes between two insight analyses for a user"
    )

    # Retrieval
    RETRIEVAL_TOP_K: int = Field(default=6, description="Fragments returned to the assembler")
    RETRIEVAL_CANDIDATE_COUNT: int = Field(
        default=24, description="Candidate rows fetched from the vector index before scoring"
    )
    KNOWLEDGE_RETENTION_DAYS: int = Field(
        default=90, description="Default retention window for conversation fragments"
    )

    # Semantic cache
    CACHE_TTL_SECONDS: int = Field(default=86_400, description="Cached answer lifetime")
    CACHE_MAX_ENTRIES_PER_USER: int = Field(
        default=500, description="Rows kept per user in semantic_cache"
    )
    CACHE_MEMORY_MAX_ENTRIES: int = Field(
        default=1000, description="Entries held by the in-process cache tier"
    )
    CACHE_SIMILARITY_THRESHOLD: float = Field(
        default=0.95, description="Cosine similarity at which a cached answer serves a paraphrase"
    )
    CACHE_SIMILARITY_CANDIDATES: int = Field(
        default=5, description="Nearest cached queries compared per lookup"
    )

    # Context assembly
    HISTORY_MAX_TURNS: int = Field(default=10, description="Conversation turns kept in context")
    HISTORY_MAX_CHARS: int = Field(default=3000, description="Character budget for history")

    # Rate limiting
    CHAT_REQUESTS_PER_MINUTE: int = Field(default=20, description="Sustained chat rate per user")
    CHAT_BURST_SIZE: int = Field(default=30, description="Chat burst size per user")

    # Metrics
    PERSIST_RAG_METRICS: bool = Field(
        default=True, description="Write operation timings to rag_performance_metrics"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
