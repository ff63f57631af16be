"""Idempotent usage billing keyed by task id.

The ledger row is written first; its primary key is the task id, so a retried
task hits the uniqueness constraint and is treated as already billed before
the balance is touched.
"""

import logging
from typing import Any

from board_engine.core.logging import get_logger, log_with_context
from board_engine.core.schemas_chat2edit import BillingResult, LedgerEntry
from board_engine.db.credits import (
    LedgerConflict,
    get_credit_balance,
    insert_ledger_entry,
    update_credit_balance,
)

logger = get_logger(__name__)

DEFAULT_CREDITS_PER_REQUEST = 2
CREDITS_PER_REQUEST = {
    "gpt-oss": 0,
    "persona-ai": 3,
    "claude-3.5-sonnet": 3,
    "nanobanana": 2,
    "gpt-5.2": 2,
}


def credits_for_model(model_key: str | None) -> int:
    """Flat per-request cost of a model."""
    return CREDITS_PER_REQUEST.get((model_key or "").strip(), DEFAULT_CREDITS_PER_REQUEST)


def ledger_title(model_key: str | None) -> str:
    return f"Chat usage · chat2edit · {model_key or 'default'}"


def charge_credits(supabase: Any, user_id: str, model_key: str | None, task_id: str) -> BillingResult:
    """
    Bill one task at most once.

    Never raises: a duplicate task id, a free model or a store failure all
    report zero credits charged.

    Args:
        supabase: Service-role Supabase client
        user_id: User to charge
        model_key: Model used (selects the cost)
        task_id: Idempotency key, stored as the ledger row id

    Returns:
        BillingResult
    """
    cost = credits_for_model(model_key)
    if cost <= 0:
        return BillingResult()

    try:
        balance = get_credit_balance(supabase, user_id)
        new_total = balance - cost
        insert_ledger_entry(
            supabase,
            LedgerEntry(
                task_id=task_id,
                user_id=user_id,
                title=ledger_title(model_key),
                delta=-cost,
                resulting_balance=new_total,
            ),
        )
    except LedgerConflict:
        log_with_context(logger, logging.INFO, "billing already_billed", task_id=task_id, user_id=user_id)
        return BillingResult()
    except Exception as e:
        log_with_context(logger, logging.ERROR, "billing failed", task_id=task_id, user_id=user_id, error=str(e))
        return BillingResult()

    try:
        update_credit_balance(supabase, user_id, new_total)
    except Exception as e:
        log_with_context(
            logger, logging.ERROR, "billing failed_to_update_credits", task_id=task_id, user_id=user_id, error=str(e)
        )
        return BillingResult(billed=True, credits_used=cost, new_total=None)

    log_with_context(
        logger, logging.INFO, "billing charged", task_id=task_id, user_id=user_id, credits_used=cost, new_total=new_total
    )
    return BillingResult(billed=True, credits_used=cost, new_total=new_total)
