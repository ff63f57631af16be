"""Tests for Supabase client construction."""

from unittest.mock import patch

import pytest

from board_engine.core.errors import StoreConfigError
from board_engine.db.supabase_client import get_user_supabase


def test_missing_anon_key_never_uses_service_client(settings):
    settings = settings.model_copy(update={"SUPABASE_ANON_KEY": ""})

    with (
        patch("board_engine.db.supabase_client.get_settings", return_value=settings),
        patch("board_engine.db.supabase_client.get_supabase") as mock_service,
        patch("board_engine.db.supabase_client.create_client") as mock_create,
    ):
        with pytest.raises(StoreConfigError, match="Supabase not configured"):
            get_user_supabase("caller-jwt")

    mock_service.assert_not_called()
    mock_create.assert_not_called()


def test_empty_token_is_rejected(settings):
    settings = settings.model_copy(update={"SUPABASE_ANON_KEY": "anon-key"})

    with (
        patch("board_engine.db.supabase_client.get_settings", return_value=settings),
        patch("board_engine.db.supabase_client.get_supabase") as mock_service,
    ):
        with pytest.raises(StoreConfigError):
            get_user_supabase("")

    mock_service.assert_not_called()


def test_user_client_uses_anon_key_and_bearer(settings):
    settings = settings.model_copy(update={"SUPABASE_ANON_KEY": "anon-key"})

    with (
        patch("board_engine.db.supabase_client.get_settings", return_value=settings),
        patch("board_engine.db.supabase_client.create_client") as mock_create,
    ):
        client = get_user_supabase("caller-jwt")

    assert client is mock_create.return_value
    args, kwargs = mock_create.call_args
    assert args == ("https://test.supabase.co", "anon-key")
    assert kwargs["options"].headers["Authorization"] == "Bearer caller-jwt"
