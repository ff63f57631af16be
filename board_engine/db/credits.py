"""Database operations for user credit balances and credit_history ledger."""

from typing import Any

from postgrest.exceptions import APIError

from board_engine.core.schemas_chat2edit import LedgerEntry

UNIQUE_VIOLATION = "23505"


class LedgerConflict(Exception):
    """A ledger row for this task id already exists."""

    def __init__(self, task_id: str):
        super().__init__(f"Ledger entry already exists for task {task_id}")
        self.task_id = task_id


def get_credit_balance(supabase: Any, user_id: str) -> int:
    """
    Read a user's current credit balance.

    Returns:
        Whole-credit balance; 0 when the user row or value is missing
    """
    response = supabase.table("users").select("credits").eq("id", user_id).maybe_single().execute()
    row = response.data if response is not None else None
    raw = (row or {}).get("credits")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return 0
    return int(raw)


def insert_ledger_entry(supabase: Any, entry: LedgerEntry) -> None:
    """
    Insert a ledger row keyed by task id.

    Raises:
        LedgerConflict: If the task id was already billed
        APIError: For any other store failure
    """
    try:
        supabase.table("credit_history").insert(entry.to_row()).execute()
    except APIError as e:
        if getattr(e, "code", None) == UNIQUE_VIOLATION:
            raise LedgerConflict(entry.task_id) from e
        raise


def update_credit_balance(supabase: Any, user_id: str, credits: int) -> None:
    supabase.table("users").update({"credits": credits}).eq("id", user_id).execute()
