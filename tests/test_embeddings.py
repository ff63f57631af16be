"""Tests for embeddings generation with mocked OpenAI API."""

from unittest.mock import MagicMock, patch

import pytest

from board_engine.core.embeddings import EmbeddingsConfig, embed_texts, resolve_embeddings_config

CONFIG = EmbeddingsConfig(api_key="k", base_url="https://api.openai.com/v1", model="text-embedding-3-small", dimensions=1536)


@pytest.fixture
def mock_openai_response():
    """Create a mock OpenAI embeddings response."""

    def _create_response(num_embeddings: int, dimension: int = 1536):
        mock_response = MagicMock()
        mock_response.data = []

        for _ in range(num_embeddings):
            mock_embedding = MagicMock()
            mock_embedding.embedding = [0.1] * dimension
            mock_response.data.append(mock_embedding)

        return mock_response

    return _create_response


def test_embed_texts_multiple(mock_openai_response):
    """Test embedding multiple texts."""
    with patch("board_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(3)
        mock_get_client.return_value = mock_client

        embeddings = embed_texts(["one", "two", "three"], CONFIG)

        assert len(embeddings) == 3
        mock_client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input=["one", "two", "three"]
        )


def test_embed_texts_empty():
    """Test embedding empty list."""
    assert embed_texts([], CONFIG) == []


def test_embed_texts_dimension_validation(mock_openai_response):
    """Test that dimension mismatch raises ValueError."""
    with patch("board_engine.core.embeddings._get_client") as mock_get_client:
        mock_client = MagicMock()
        mock_client.embeddings.create.return_value = mock_openai_response(1, dimension=512)
        mock_get_client.return_value = mock_client

        with pytest.raises(ValueError, match="Embedding dimension mismatch"):
            embed_texts(["Test text"], CONFIG)


def test_dedicated_key_targets_openai(settings):
    config = resolve_embeddings_config(settings.model_copy(update={"RAG_EMBEDDINGS_API_KEY": "rag-key"}))

    assert config.api_key == "rag-key"
    assert config.base_url == "https://api.openai.com/v1"
    assert config.model == "text-embedding-3-small"


def test_gateway_fallback_namespaces_model(settings):
    config = resolve_embeddings_config(settings)

    assert config.api_key == "test-openrouter-key"
    assert config.base_url == "https://openrouter.ai/api/v1"
    assert config.model == "openai/text-embedding-3-small"


def test_no_credentials(settings):
    assert resolve_embeddings_config(settings.model_copy(update={"OPENROUTER_API_KEY": ""})) is None
