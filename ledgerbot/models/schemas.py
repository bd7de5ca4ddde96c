from datetime import date, datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

TransactionStatus = Literal["pending", "confirmed", "personal", "deleted"]

# Statuses a transaction may have and still be modified or deleted.
ACTIVE_STATUSES: tuple[str, ...] = ("pending", "confirmed", "personal")

CATEGORIES: tuple[str, ...] = (
    "dining",
    "grocery",
    "gas",
    "shopping",
    "subscription",
    "travel",
    "transport",
    "entertainment",
    "health",
    "utilities",
    "sports",
    "education",
    "other",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_amount(amount: float) -> str:
    """Two-decimal currency formatting used in every narration: '$25.00'."""
    return f"${amount:,.2f}"


class Transaction(BaseModel):
    id: str
    project_id: str
    user_id: int
    chat_id: int
    merchant: str
    amount: float
    currency: str
    category: str
    payer: str
    splits: dict[str, float] = {}
    status: TransactionStatus = "pending"
    raw_input: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    confirmed_at: datetime | None = None


class Project(BaseModel):
    id: str
    name: str
    default_currency: str = "USD"
    members: list[str] = []


class ConfidenceFactors(BaseModel):
    merchant: float = 1.0
    amount: float = 1.0
    category: float = 1.0


class ParsedTransaction(BaseModel):
    merchant: str
    amount: float = Field(gt=0, allow_inf_nan=False)
    currency: str
    category: str = "other"
    excluded_participants: list[str] = []
    custom_splits: dict[str, float] | None = None


class ParseResult(BaseModel):
    """Output of the field-extraction service."""

    fields: ParsedTransaction
    confidence: float = 1.0
    confidence_factors: ConfidenceFactors = Field(default_factory=ConfidenceFactors)


class ToolExecutionResult(BaseModel):
    success: bool
    content: str
    details: dict[str, Any] | None = None
    error: str | None = None


class CallbackAction(BaseModel):
    """Structured form of a confirmation/edit tap coming back from the chat."""

    action: str
    field: str | None = None
    transaction_id: str | None = None


class Reply(BaseModel):
    text: str
    actions: list[CallbackAction] = []


class MessageRequest(BaseModel):
    user_id: int
    chat_id: int
    text: str
    display_name: str = "User"


class CallbackRequest(BaseModel):
    user_id: int
    chat_id: int
    data: str
    display_name: str = "User"


class QueryFilters(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    category: str | None = None
    payer: str | None = None
    limit: int | None = 50


class SweepResponse(BaseModel):
    sessions: int
    working_memory: int
