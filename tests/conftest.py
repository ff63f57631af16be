"""Pytest configuration and fixtures."""

import os

import pytest

# Settings are read lazily but cached; set the environment before any test imports them
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("OPENROUTER_API_KEY", "test-openrouter-key")
os.environ.setdefault("BOARD_ENGINE_ENV", "test")
os.environ.setdefault("RAG_ENABLED", "false")
os.environ.setdefault("ENABLE_WEB_SEARCH", "false")


@pytest.fixture(scope="session", autouse=True)
def setup_test_env():
    """Set up test environment variables."""
    os.environ["SUPABASE_URL"] = "https://test.supabase.co"
    os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-key"
    os.environ["OPENROUTER_API_KEY"] = "test-openrouter-key"
    os.environ["BOARD_ENGINE_ENV"] = "test"
    os.environ["RAG_ENABLED"] = "false"
    os.environ["ENABLE_WEB_SEARCH"] = "false"


@pytest.fixture
def settings():
    """Settings with every optional network stage switched off."""
    from board_engine.core.config import Settings

    return Settings(
        SUPABASE_URL="https://test.supabase.co",
        SUPABASE_SERVICE_ROLE_KEY="test-key",
        OPENROUTER_API_KEY="test-openrouter-key",
        BOARD_ENGINE_ENV="test",
        RAG_ENABLED=False,
        ENABLE_WEB_SEARCH=False,
        SCHEDULER_SYNC_URL="",
        PUBLIC_SITE_URL="",
    )
