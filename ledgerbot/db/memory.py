"""Working memory: what we were just talking about, per (user, chat).

Every write slides the expiry window forward. Writes are read-then-write
without a lock; two concurrent requests for the same key can lose one side's
update. Messages for one key are assumed to arrive one at a time.
"""

from datetime import timedelta
from typing import Any, Literal

from tinydb import TinyDB

from ledgerbot.db.ttl import expired, is_expired, row_key
from ledgerbot.models.conversation import (
    ConversationMessage,
    LastTransaction,
    PendingClarification,
    WorkingMemory,
)
from ledgerbot.models.schemas import utcnow

MEMORY_TTL = timedelta(minutes=10)
MAX_RECENT_MESSAGES = 5


class WorkingMemoryStore:
    def __init__(self, db: TinyDB, ttl: timedelta = MEMORY_TTL):
        self.table = db.table("working_memory")
        self.ttl = ttl

    async def get(self, user_id: int, chat_id: int) -> WorkingMemory:
        doc = self.table.get(row_key(user_id, chat_id))
        if is_expired(doc, utcnow()):
            return WorkingMemory()

        return WorkingMemory(
            last_transaction=doc.get("last_transaction"),
            pending_clarification=doc.get("pending_clarification"),
            recent_messages=doc.get("recent_messages", []),
        )

    def _upsert(self, user_id: int, chat_id: int, fields: dict[str, Any]) -> None:
        """Write ``fields`` and refresh the expiry.

        An expired row is replaced wholesale so none of its stale fields
        survive the write.
        """
        now = utcnow()
        key = row_key(user_id, chat_id)
        stamps = {"updated_at": now.isoformat(), "expires_at": (now + self.ttl).isoformat()}

        if is_expired(self.table.get(key), now):
            self.table.upsert(
                {
                    "user_id": user_id,
                    "chat_id": chat_id,
                    "last_transaction": None,
                    "pending_clarification": None,
                    "recent_messages": [],
                    **fields,
                    **stamps,
                },
                key,
            )
        else:
            self.table.update({**fields, **stamps}, key)

    async def set_last_transaction(
        self, user_id: int, chat_id: int, transaction: LastTransaction
    ) -> None:
        """Anchor corrections to ``transaction``; any pending clarification is dropped."""
        self._upsert(
            user_id,
            chat_id,
            {
                "last_transaction": transaction.model_dump(mode="json"),
                "pending_clarification": None,
            },
        )

    async def clear_last_transaction(self, user_id: int, chat_id: int) -> None:
        self._upsert(user_id, chat_id, {"last_transaction": None})

    async def set_pending_clarification(
        self, user_id: int, chat_id: int, clarification: PendingClarification
    ) -> None:
        self._upsert(
            user_id,
            chat_id,
            {"pending_clarification": clarification.model_dump(mode="json")},
        )

    async def clear_pending_clarification(self, user_id: int, chat_id: int) -> None:
        self._upsert(user_id, chat_id, {"pending_clarification": None})

    async def append_message(
        self,
        user_id: int,
        chat_id: int,
        role: Literal["user", "assistant"],
        content: str,
    ) -> None:
        memory = await self.get(user_id, chat_id)
        messages = _window(memory.recent_messages, ConversationMessage(role=role, content=content))
        self._upsert(user_id, chat_id, {"recent_messages": messages})

    async def update_after_transaction(
        self,
        user_id: int,
        chat_id: int,
        transaction: LastTransaction,
        user_message: str,
    ) -> None:
        """Record a freshly created transaction and the message that created it."""
        memory = await self.get(user_id, chat_id)
        messages = _window(
            memory.recent_messages, ConversationMessage(role="user", content=user_message)
        )
        self._upsert(
            user_id,
            chat_id,
            {
                "last_transaction": transaction.model_dump(mode="json"),
                "pending_clarification": None,
                "recent_messages": messages,
            },
        )

    async def extend_ttl(self, user_id: int, chat_id: int) -> None:
        now = utcnow()
        key = row_key(user_id, chat_id)
        if is_expired(self.table.get(key), now):
            return
        self.table.update(
            {"updated_at": now.isoformat(), "expires_at": (now + self.ttl).isoformat()}, key
        )

    async def sweep_expired(self) -> int:
        removed = self.table.remove(expired(utcnow()))
        return len(removed)


def _window(
    messages: list[ConversationMessage], new: ConversationMessage
) -> list[dict[str, Any]]:
    kept = [*messages, new][-MAX_RECENT_MESSAGES:]
    return [m.model_dump(mode="json") for m in kept]
