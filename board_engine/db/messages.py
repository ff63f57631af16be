"""Database operations for board chat transcript messages."""

from typing import Any


def insert_assistant_message(supabase: Any, chat_id: str, content: str) -> None:
    """Record an assistant turn in a board chat."""
    supabase.table("messages").insert(
        {"chat_id": chat_id, "role": "assistant", "content": content}
    ).execute()
