"""Database operations for automations (consumed by the external scheduler)."""

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx

from board_engine.core.config import get_settings
from board_engine.core.logging import get_logger
from board_engine.core.schemas_chat2edit import AutomationSpec

logger = get_logger(__name__)


def create_automation(supabase: Any, user_id: str, spec: AutomationSpec, webhook_url: str) -> str:
    """
    Store an automation for the scheduler service.

    Args:
        supabase: Supabase client
        user_id: Owner user id
        spec: Automation to register (normally disabled, pending confirmation)
        webhook_url: Callback the scheduler invokes on each run

    Returns:
        The automation id
    """
    now = datetime.now(timezone.utc).isoformat()
    row = {
        "id": spec.id,
        "user_id": user_id,
        "name": spec.name,
        "enabled": spec.enabled,
        "cron": spec.cron,
        "timezone": spec.timezone,
        "webhook_url": webhook_url,
        "internal": spec.internal,
        "preview_config": {
            "enabled": True,
            "auto_confirm": spec.auto_confirm,
            "confirm_timeout_seconds": spec.confirm_after_seconds,
        },
        "todos": [
            {"id": str(uuid4()), "text": step.title, "done": False, "created_at": now}
            for step in spec.task_plan
        ],
        "last_run_at": None,
        "last_run_ok": None,
        "last_error": None,
        "created_at": now,
        "updated_at": now,
    }
    supabase.table("automations").insert(row).execute()
    logger.info(f"Created automation {spec.id} ({spec.kind}) cron='{spec.cron}' tz={spec.timezone}")
    return spec.id


async def trigger_scheduler_resync() -> bool:
    """
    Ask the scheduler service to reload automations.

    Best-effort: returns False when no hook is configured or the call fails.
    """
    settings = get_settings()
    if not settings.SCHEDULER_SYNC_URL:
        return False

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(settings.SCHEDULER_SYNC_URL)
            response.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Scheduler resync failed (non-fatal): {e}")
        return False
