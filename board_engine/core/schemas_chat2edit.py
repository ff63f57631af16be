"""Schemas for the board chat2edit pipeline."""

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# =========================
# Conversation & Request
# =========================


class ChatTurn(BaseModel):
    """A single immutable conversation turn."""

    role: Literal["user", "assistant"]
    content: str = Field(validation_alias=AliasChoices("content", "text"))


def _normalize_history(value: Any) -> list[dict[str, str]]:
    if not isinstance(value, list):
        return []
    turns = []
    for item in value:
        if not isinstance(item, dict):
            continue
        role = item.get("role")
        content = item.get("content", item.get("text"))
        if role not in ("user", "assistant") or not isinstance(content, str):
            continue
        turns.append({"role": role, "content": content})
    return turns


def _normalize_ids(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    seen: dict[str, None] = {}
    for item in value:
        if isinstance(item, str) and item.strip():
            seen.setdefault(item.strip(), None)
    return list(seen)


def safe_boolean(value: Any) -> bool:
    """Coerce loosely-typed flags the way browsers send them."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return False


class Chat2EditRequest(BaseModel):
    """Inbound chat2edit request.

    Accepts both the snake_case field names and the camelCase names the board
    client sends (``attachedResourceIds``, ``modelId``, ``defaultPersonaId``).
    """

    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    history: list[ChatTurn] = Field(default_factory=list)
    attached_document_ids: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attached_document_ids", "attachedResourceIds"),
    )
    model_key: str | None = Field(default=None, validation_alias=AliasChoices("model_key", "modelId"))
    default_owner_scope: str | None = Field(
        default=None, validation_alias=AliasChoices("default_owner_scope", "defaultPersonaId")
    )
    mode: Literal["ask", "create"] = "create"
    stream: bool = False
    task_id: str | None = Field(default=None, validation_alias=AliasChoices("task_id", "taskId"))
    chat_id: str | None = Field(default=None, validation_alias=AliasChoices("chat_id", "chatId"))

    @field_validator("message", mode="before")
    @classmethod
    def _strip_message(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("history", mode="before")
    @classmethod
    def _clean_history(cls, v: Any) -> list[dict[str, str]]:
        return _normalize_history(v)

    @field_validator("attached_document_ids", mode="before")
    @classmethod
    def _clean_ids(cls, v: Any) -> list[str]:
        return _normalize_ids(v)

    @field_validator("model_key", "default_owner_scope", "task_id", "chat_id", mode="before")
    @classmethod
    def _optional_string(cls, v: Any) -> str | None:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> str:
        return "ask" if v == "ask" else "create"

    @field_validator("stream", mode="before")
    @classmethod
    def _coerce_stream(cls, v: Any) -> bool:
        return safe_boolean(v)


# =========================
# Documents & Edits
# =========================


class BoardDocument(BaseModel):
    """A persona-owned or private structured document as stored."""

    id: str
    persona_id: str | None = None
    title: str | None = None
    content: str | None = None
    type: str | None = None
    updated_at: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump()


class EditProposal(BaseModel):
    """A document edit proposed by the model, before reconciliation."""

    target_id: str | None = None
    target_title: str | None = None
    content: str = ""
    kind: str | None = None

    @classmethod
    def from_model_item(cls, item: Any) -> "EditProposal | None":
        """Build a proposal from one raw ``documents[]`` entry; None for non-objects."""
        if not isinstance(item, dict):
            return None
        raw_id = item.get("id")
        target_id = raw_id.strip() if isinstance(raw_id, str) else ""
        title = item.get("title")
        content = item.get("content")
        kind = item.get("type")
        return cls(
            target_id=target_id or None,
            target_title=title if isinstance(title, str) else None,
            content=content if isinstance(content, str) else "",
            kind=kind if isinstance(kind, str) else None,
        )


class ChangeStats(BaseModel):
    """Block-level summary of a content change."""

    inserted: int = 0
    deleted: int = 0
    unchanged: int = 0


class DocumentChange(BaseModel):
    """Reconciled before/after pair for one document."""

    id: str
    persona_id: str | None = None
    title_before: str | None = None
    title_after: str | None = None
    content_before: str | None = None
    content_after: str | None = None
    type_before: str | None = None
    type_after: str | None = None
    stats: ChangeStats | None = None


class ParsedModelOutput(BaseModel):
    """Reply text plus proposed edits extracted from raw model output."""

    reply: str
    proposals: list[EditProposal] = Field(default_factory=list)
    structured: bool = False


# =========================
# Context
# =========================


class WebSearchResult(BaseModel):
    """One ranked web search hit."""

    title: str = ""
    url: str = ""
    snippet: str = ""


class WebSearchInfo(BaseModel):
    query: str
    results: list[WebSearchResult] = Field(default_factory=list)


# =========================
# Billing
# =========================


class LedgerEntry(BaseModel):
    """One credit_history row; ``task_id`` is unique."""

    task_id: str
    user_id: str
    title: str
    delta: int
    resulting_balance: int

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.task_id,
            "user_id": self.user_id,
            "title": self.title,
            "qty": self.delta,
            "amount": self.delta,
            "total": self.resulting_balance,
        }


class BillingResult(BaseModel):
    billed: bool = False
    credits_used: int = 0
    new_total: int | None = None


# =========================
# Automations
# =========================


class AutomationTaskStep(BaseModel):
    title: str
    status: Literal["pending", "done"] = "pending"


class CronInference(BaseModel):
    cron: str
    timezone_hint: str


class AutomationSpec(BaseModel):
    """A recurring automation registered disabled, pending confirmation."""

    id: str
    name: str
    kind: Literal["ai_news_briefing", "competitor_monitor", "other"]
    cron: str
    timezone: str | None = None
    task_plan: list[AutomationTaskStep] = Field(default_factory=list)
    confirm_after_seconds: int = 10
    auto_confirm: bool = True
    enabled: bool = False
    confirm_at: str
    internal: dict[str, Any] = Field(default_factory=dict)


# =========================
# Response
# =========================


class Chat2EditResponse(BaseModel):
    """Terminal success payload, streamed as ``final`` or returned as JSON."""

    reply: str
    updated_docs: list[BoardDocument] = Field(default_factory=list)
    changes: list[DocumentChange] = Field(default_factory=list)
    web_search_enabled: bool = False
    web_search: WebSearchInfo | None = None
    web_search_error: str | None = None
    retrieval_error: str | None = None
    task_id: str
    credits_used: int = 0
