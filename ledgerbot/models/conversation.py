"""Conversation state: sessions, working memory and decisions.

Session states and decisions are closed variants discriminated on ``type``;
handlers match on the concrete class.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from ledgerbot.models.schemas import utcnow

EditableField = Literal["amount", "merchant", "category"]


# -- Session states ---------------------------------------------------------


class IdleState(BaseModel):
    type: Literal["idle"] = "idle"


class AwaitingEditValue(BaseModel):
    type: Literal["awaiting_edit_value"] = "awaiting_edit_value"
    field: EditableField
    transaction_id: str


class AwaitingConfirmation(BaseModel):
    type: Literal["awaiting_confirmation"] = "awaiting_confirmation"
    action: Literal["delete"]
    target_id: str


class AwaitingIntentClarification(BaseModel):
    type: Literal["awaiting_intent_clarification"] = "awaiting_intent_clarification"
    original_text: str


class AwaitingCategory(BaseModel):
    type: Literal["awaiting_category"] = "awaiting_category"
    transaction_id: str
    merchant: str


SessionState = Annotated[
    Union[
        IdleState,
        AwaitingEditValue,
        AwaitingConfirmation,
        AwaitingIntentClarification,
        AwaitingCategory,
    ],
    Field(discriminator="type"),
]

session_state_adapter: TypeAdapter[SessionState] = TypeAdapter(SessionState)


class Session(BaseModel):
    user_id: int
    chat_id: int
    state: SessionState
    created_at: datetime
    expires_at: datetime


# -- Working memory ---------------------------------------------------------


class LastTransaction(BaseModel):
    id: str
    merchant: str
    amount: float
    currency: str
    category: str
    created_at: datetime


class PendingClarification(BaseModel):
    transaction_id: str
    field: EditableField
    original_value: str | float


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class WorkingMemory(BaseModel):
    last_transaction: LastTransaction | None = None
    pending_clarification: PendingClarification | None = None
    recent_messages: list[ConversationMessage] = []


# -- Decisions --------------------------------------------------------------


class ToolCall(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    name: str
    arguments: dict[str, Any] = {}


class TextReply(BaseModel):
    type: Literal["text_reply"] = "text_reply"
    message: str


Decision = Annotated[Union[ToolCall, TextReply], Field(discriminator="type")]
