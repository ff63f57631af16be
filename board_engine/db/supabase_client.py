"""Supabase client initialization."""

from functools import lru_cache

from supabase import Client, ClientOptions, create_client

from board_engine.core.config import get_settings
from board_engine.core.errors import StoreConfigError


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """
    Get Supabase client instance (cached singleton).

    Returns:
        Supabase client configured with service role key

    Raises:
        Exception: If client initialization fails
    """
    try:
        settings = get_settings()
        client = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        return client
    except Exception as e:
        raise RuntimeError(f"Failed to initialize Supabase client: {e}") from e


def get_user_supabase(access_token: str) -> Client:
    """
    Get a Supabase client that acts as the signed-in user.

    Row-level security on persona documents and storage applies to this
    client, so it is never replaced by the service-role client.

    Args:
        access_token: The caller's bearer token

    Returns:
        Supabase client scoped to the user

    Raises:
        StoreConfigError: If no anon key is configured or the token is empty
    """
    settings = get_settings()
    if not settings.SUPABASE_ANON_KEY or not access_token:
        raise StoreConfigError("Supabase not configured")
    try:
        return create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_ANON_KEY,
            options=ClientOptions(
                headers={"Authorization": f"Bearer {access_token}"},
                auto_refresh_token=False,
                persist_session=False,
            ),
        )
    except Exception as e:
        raise RuntimeError(f"Failed to initialize user Supabase client: {e}") from e
