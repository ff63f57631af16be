"""Prompt chain for chat-driven document editing.

Renders the mode-specific system prompt plus the user template (instruction,
history, web research and the current documents) into LangChain messages.
"""

import json

from langchain_core.messages import BaseMessage, SystemMessage
from langchain_core.prompts import ChatPromptTemplate

from board_engine.core.config import get_settings
from board_engine.core.schemas_chat2edit import BoardDocument, ChatTurn

CHAT2EDIT_CREATE_SYSTEM_PROMPT = """You are an editor for social media and persona documents.
You can also assist with image or illustration requests; the system will create images when needed.

# Your Job
Follow the user's instruction and rewrite, extend or create documents.
- Edit the documents you are given; keep their id when you change one
- Create a new document (omit "id") only when the instruction asks for new content
- Keep content in the document's existing format (HTML for rich text, JSON for posts)
- Never claim you cannot produce images; the system attaches them

# Output Format
Write a short reply to the user in their language, then a line containing
only ---JSON---, then a single JSON object:
{"reply": "<same reply>", "documents": [{"id": "<existing id or omit>", "title": "...", "type": "...", "content": "..."}]}

Return "documents": [] when nothing should change."""

CHAT2EDIT_ASK_SYSTEM_PROMPT = """You are an assistant for social media and persona documents.

# Your Job
Answer the user's question using the documents and web research provided.
- Do not change documents unless the user explicitly asks you to
- Cite web sources by title when you rely on them

# Output Format
Write your answer in the user's language, then a line containing only
---JSON---, then a single JSON object:
{"reply": "<same answer>", "documents": []}

Only include entries in "documents" (same shape: id, title, type, content)
when the user asked for an edit."""

CHAT2EDIT_USER_PROMPT = """User id:
{userId}

Conversation history:
{history}

User instruction:
{message}

Web research (may be empty):
{web}

Current documents (JSON):
{docs}"""


def truncate_for_prompt(content: str) -> str:
    """Keep the head and tail of oversized document bodies."""
    settings = get_settings()
    raw = content or ""
    if len(raw) <= settings.DOC_PROMPT_MAX_CHARS:
        return raw
    head = raw[: settings.DOC_PROMPT_HEAD_CHARS]
    tail = raw[max(0, len(raw) - settings.DOC_PROMPT_TAIL_CHARS):]
    return f"{head}\n...\n{tail}"


def serialize_docs_for_prompt(docs: list[BoardDocument]) -> str:
    payload = [
        {"id": d.id, "title": d.title, "type": d.type, "content": truncate_for_prompt(d.content or "")}
        for d in docs
    ]
    return json.dumps(payload, ensure_ascii=False)


def build_chat2edit_messages(
    mode: str,
    user_id: str,
    history: list[ChatTurn],
    message: str,
    web: str,
    docs: list[BoardDocument],
) -> list[BaseMessage]:
    """
    Render the chat2edit prompt.

    Args:
        mode: "ask" or "create"
        user_id: Requesting user
        history: Prior conversation turns
        message: The user's instruction
        web: Formatted web research (may be empty)
        docs: Loaded and retrieved documents

    Returns:
        System and user messages ready for the model
    """
    system_prompt = CHAT2EDIT_ASK_SYSTEM_PROMPT if mode == "ask" else CHAT2EDIT_CREATE_SYSTEM_PROMPT
    prompt = ChatPromptTemplate.from_messages([
        SystemMessage(content=system_prompt),
        ("user", CHAT2EDIT_USER_PROMPT),
    ])
    return prompt.format_messages(
        userId=user_id,
        history=json.dumps([t.model_dump() for t in history], ensure_ascii=False),
        message=message,
        web=web,
        docs=serialize_docs_for_prompt(docs),
    )
