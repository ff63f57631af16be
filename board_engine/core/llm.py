"""LLM client utilities for LangChain integration.

Every model is reached through the OpenAI-compatible gateway; a model key
names an entry of the catalogue, which is either the static default table or
the enabled rows of ``model_configs``.
"""

from dataclasses import dataclass
from typing import Any

from langchain_openai import ChatOpenAI

from board_engine.core.cache import TTLCache
from board_engine.core.config import Settings, get_settings
from board_engine.core.errors import ModelConfigError
from board_engine.core.logging import get_logger
from board_engine.db.model_configs import list_enabled_model_configs

logger = get_logger(__name__)

CATALOGUE_CACHE_KEY = "model_catalogue"


@dataclass(frozen=True)
class ModelConfig:
    """A resolved model: catalogue key, provider model id and credential."""

    key: str
    model_id: str
    api_key: str


# key -> (provider model id, settings attribute holding its dedicated credential)
DEFAULT_MODELS: dict[str, tuple[str, str]] = {
    "persona-ai": ("anthropic/claude-3.5-sonnet", "CLAUDE_API_KEY"),
    "gpt-5.2": ("openai/gpt-4o", "GPT52_API_KEY"),
    "gpt-oss": ("openai/gpt-oss-120b:free", "OPENROUTER_API_KEY"),
    "nanobanana": ("google/gemini-3-pro-image-preview", "OPENROUTER_API_KEY"),
    "gemini-3.0-pro": ("google/gemini-3-pro-preview", "OPENROUTER_API_KEY"),
    "minimax-m2": ("minimax/minimax-m2", "MINIMAX_API_KEY"),
    "kimi-0905": ("moonshotai/kimi-k2-0905", "KIMI_API_KEY"),
}


def default_model_configs(settings: Settings | None = None) -> list[ModelConfig]:
    """Static catalogue; each model falls back to the shared gateway key."""
    settings = settings or get_settings()
    configs = []
    for key, (model_id, credential) in DEFAULT_MODELS.items():
        api_key = (getattr(settings, credential, "") or settings.OPENROUTER_API_KEY or "").strip()
        configs.append(ModelConfig(key=key, model_id=model_id, api_key=api_key))
    return configs


def _configs_from_rows(rows: list[dict[str, Any]], settings: Settings) -> list[ModelConfig]:
    configs = []
    for row in rows:
        key = str(row.get("id") or "").strip()
        model_id = str(row.get("model_id") or "").strip()
        if not key or not model_id:
            continue
        api_key = str(row.get("api_key") or "").strip() or settings.OPENROUTER_API_KEY
        configs.append(ModelConfig(key=key, model_id=model_id, api_key=api_key))
    return configs


def load_model_catalogue(
    supabase: Any | None = None,
    cache: TTLCache | None = None,
    settings: Settings | None = None,
) -> list[ModelConfig]:
    """
    Load the model catalogue, preferring the ``model_configs`` table.

    The table wins when it yields at least one usable row; a store failure
    falls back to the static table.

    Args:
        supabase: Supabase client (None skips the table lookup)
        cache: Optional TTL cache shared across requests
        settings: Optional settings override

    Returns:
        Ordered list of ModelConfig
    """
    settings = settings or get_settings()

    def _load() -> list[ModelConfig]:
        if supabase is not None:
            try:
                configs = _configs_from_rows(list_enabled_model_configs(supabase), settings)
                if configs:
                    return configs
            except Exception as e:
                logger.warning(f"model_configs lookup failed, using defaults: {e}")
        return default_model_configs(settings)

    if cache is None:
        return _load()
    return cache.get_or_set(CATALOGUE_CACHE_KEY, _load)


def resolve_model_config(model_key: str | None, catalogue: list[ModelConfig]) -> ModelConfig:
    """
    Pick the catalogue entry for ``model_key``.

    Unknown or empty keys resolve to the first entry.

    Raises:
        ModelConfigError: If the catalogue is empty or the model has no credential
    """
    if not catalogue:
        raise ModelConfigError("No models are configured")

    key = (model_key or "").strip() or get_settings().DEFAULT_MODEL_KEY
    config = next((c for c in catalogue if c.key == key), catalogue[0])
    if not config.api_key:
        raise ModelConfigError(f"Missing API key for model {config.key}")
    return config


def get_llm(config: ModelConfig, streaming: bool = False, temperature: float | None = None) -> ChatOpenAI:
    """
    Get a configured chat model for a catalogue entry.

    Args:
        config: Resolved model configuration
        streaming: Whether the model should stream tokens
        temperature: Override for CHAT2EDIT_TEMPERATURE

    Returns:
        ChatOpenAI instance pointed at the gateway
    """
    settings = get_settings()
    return ChatOpenAI(
        api_key=config.api_key,
        base_url=settings.OPENROUTER_BASE_URL,
        model=config.model_id,
        temperature=settings.CHAT2EDIT_TEMPERATURE if temperature is None else temperature,
        streaming=streaming,
    )
