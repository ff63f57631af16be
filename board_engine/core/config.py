"""Configuration management for the Persona Board engine."""

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
    SUPABASE_ANON_KEY: str = Field(default="", description="Anon key for user-scoped clients (required to serve chat2edit)")

    # Environment
    BOARD_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Model gateway (OpenAI-compatible)
    OPENROUTER_BASE_URL: str = Field(
        default="https://openrouter.ai/api/v1", description="OpenAI-compatible gateway base URL"
    )
    OPENROUTER_API_KEY: str = Field(default="", description="Shared fallback credential for all models")
    CLAUDE_API_KEY: str = Field(default="", description="Credential for the persona-ai model")
    GPT52_API_KEY: str = Field(default="", description="Credential for the gpt-5.2 model")
    MINIMAX_API_KEY: str = Field(default="", description="Credential for the minimax-m2 model")
    KIMI_API_KEY: str = Field(default="", description="Credential for the kimi-0905 model")
    DEFAULT_MODEL_KEY: str = Field(default="", description="Model key used when the request names none")
    CHAT2EDIT_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature for chat2edit")

    # Retrieval augmentation
    RAG_ENABLED: bool = Field(default=True, description="Enable retrieval-augmented context")
    RAG_EMBEDDINGS_API_KEY: str = Field(default="", description="Dedicated embeddings credential")
    RAG_EMBEDDINGS_BASE_URL: str = Field(default="", description="Embeddings endpoint override")
    RAG_EMBEDDINGS_MODEL: str = Field(
        default="text-embedding-3-small", description="Embedding model"
    )
    RAG_EMBEDDINGS_DIMENSIONS: int = Field(default=1536, description="Embedding vector dimension")
    RAG_CHUNK_SIZE: int = Field(default=900, description="Max chars per indexed chunk")
    RAG_CHUNK_OVERLAP: int = Field(default=120, description="Overlap between indexed chunks")
    RAG_TIMEOUT_SECONDS: float = Field(default=20.0, description="Sub-timeout for retrieval")

    # Web search
    ENABLE_WEB_SEARCH: bool = Field(default=True, description="Enable web search context")
    WEB_SEARCH_PROVIDER: str = Field(default="", description="serper, brave, or empty for auto")
    SERPER_API_KEY: str = Field(default="", description="Serper API key")
    BRAVE_SEARCH_API_KEY: str = Field(default="", description="Brave Search API key")
    WEB_SEARCH_TIMEOUT_SECONDS: float = Field(default=15.0, description="Sub-timeout for web search")
    WEB_SEARCH_RESULT_LIMIT: int = Field(default=3, description="Web results fed to the prompt")

    # Pipeline
    CHAT2EDIT_DEADLINE_SECONDS: float = Field(default=120.0, description="Overall request deadline")
    HEARTBEAT_SECONDS: float = Field(default=15.0, description="SSE keep-alive interval")
    DOC_PROMPT_MAX_CHARS: int = Field(default=12000, description="Per-document prompt cap")
    DOC_PROMPT_HEAD_CHARS: int = Field(default=6000, description="Head window when truncating")
    DOC_PROMPT_TAIL_CHARS: int = Field(default=6000, description="Tail window when truncating")
    UPSERT_TIMEOUT_SECONDS: float = Field(default=25.0, description="Timeout for the batch upsert")
    IMAGE_TIMEOUT_SECONDS: float = Field(default=60.0, description="Timeout for image attachment")

    # Media
    MEDIA_BUCKET: str = Field(default="persona-media", description="Primary storage bucket")
    MEDIA_FALLBACK_BUCKET: str = Field(default="chat-attachments", description="Fallback bucket")
    IMAGE_MODEL_KEY: str = Field(default="nanobanana", description="Model key for image work")
    IMAGE_MODEL_ID: str = Field(
        default="google/gemini-3-pro-image-preview", description="Gateway image model id"
    )

    # Automations
    PUBLIC_SITE_URL: str = Field(default="", description="Fallback public origin for callbacks")
    SCHEDULER_SYNC_URL: str = Field(default="", description="Scheduler resync hook (optional)")
    AUTOMATION_CONFIRM_SECONDS: int = Field(default=10, description="Confirmation window")
    GEOIP_LOOKUP_URL: str = Field(
        default="https://ipapi.co/{ip}/json/", description="GeoIP country lookup URL template"
    )

    # Caching
    RECENT_DOCS_CACHE_TTL_SECONDS: float = Field(default=30.0, description="TTL for lookup caches")


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
