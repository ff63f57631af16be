"""Embeddings generation for the retrieval index."""

from dataclasses import dataclass

from openai import OpenAI

from board_engine.core.config import Settings, get_settings
from board_engine.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EMBEDDINGS_BASE_URL = "https://api.openai.com/v1"
BATCH_SIZE = 96


@dataclass(frozen=True)
class EmbeddingsConfig:
    """Resolved embeddings endpoint."""

    api_key: str
    base_url: str
    model: str
    dimensions: int


def resolve_embeddings_config(settings: Settings | None = None) -> EmbeddingsConfig | None:
    """
    Pick the embeddings endpoint and credential.

    A dedicated RAG_EMBEDDINGS_API_KEY targets OpenAI (or the configured base
    URL); otherwise the first available gateway credential is used against the
    gateway, with the model namespaced as ``openai/<model>``.

    Returns:
        EmbeddingsConfig, or None when no credential is available
    """
    settings = settings or get_settings()
    model = settings.RAG_EMBEDDINGS_MODEL or "text-embedding-3-small"
    dimensions = settings.RAG_EMBEDDINGS_DIMENSIONS if settings.RAG_EMBEDDINGS_DIMENSIONS > 0 else 1536

    if settings.RAG_EMBEDDINGS_API_KEY:
        base_url = settings.RAG_EMBEDDINGS_BASE_URL or DEFAULT_EMBEDDINGS_BASE_URL
        return EmbeddingsConfig(settings.RAG_EMBEDDINGS_API_KEY, base_url, model, dimensions)

    fallbacks = [
        settings.OPENROUTER_API_KEY,
        settings.GPT52_API_KEY,
        settings.CLAUDE_API_KEY,
        settings.MINIMAX_API_KEY,
        settings.KIMI_API_KEY,
    ]
    api_key = next((key for key in fallbacks if key), "")
    if not api_key:
        return None

    base_url = settings.RAG_EMBEDDINGS_BASE_URL or settings.OPENROUTER_BASE_URL
    if "openrouter.ai" in base_url and "/" not in model:
        model = f"openai/{model}"
    return EmbeddingsConfig(api_key, base_url, model, dimensions)


def _get_client(config: EmbeddingsConfig) -> OpenAI:
    """Get OpenAI client instance for the embeddings endpoint."""
    return OpenAI(api_key=config.api_key, base_url=config.base_url)


def embed_texts(texts: list[str], config: EmbeddingsConfig) -> list[list[float]]:
    """
    Generate embeddings for a list of texts.

    Args:
        texts: List of text strings to embed
        config: Resolved embeddings endpoint

    Returns:
        List of embedding vectors (each vector is list of floats)

    Raises:
        ValueError: If embedding dimension or count doesn't match
        Exception: If the API call fails
    """
    if not texts:
        return []

    client = _get_client(config)
    embeddings: list[list[float]] = []

    try:
        for start in range(0, len(texts), BATCH_SIZE):
            batch = texts[start : start + BATCH_SIZE]
            response = client.embeddings.create(model=config.model, input=batch)

            for i, embedding_obj in enumerate(response.data):
                embedding = embedding_obj.embedding

                # Validate dimension
                if len(embedding) != config.dimensions:
                    raise ValueError(
                        f"Embedding dimension mismatch for text {start + i}: "
                        f"expected {config.dimensions}, got {len(embedding)}"
                    )

                embeddings.append(embedding)

        if len(embeddings) != len(texts):
            raise ValueError(
                f"Embeddings count mismatch: expected {len(texts)}, got {len(embeddings)}"
            )

        logger.info(f"Generated {len(embeddings)} embeddings using {config.model}")
        return embeddings

    except Exception as e:
        logger.error(f"Failed to generate embeddings: {e}")
        raise
