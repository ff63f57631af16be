"""Database operations for model_configs table."""

from typing import Any


def list_enabled_model_configs(supabase: Any) -> list[dict]:
    """
    List enabled model configurations, highest priority first.

    Returns:
        Rows with id, model_id, api_key, enabled, priority
    """
    response = (
        supabase.table("model_configs")
        .select("id,model_id,api_key,enabled,priority")
        .eq("enabled", True)
        .order("priority", desc=False)
        .execute()
    )
    return response.data or []
