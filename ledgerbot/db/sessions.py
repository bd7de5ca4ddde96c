from datetime import datetime, timedelta

from loguru import logger
from pydantic import ValidationError
from tinydb import TinyDB

from ledgerbot.db.ttl import expired, is_expired, row_key
from ledgerbot.errors import InvalidState
from ledgerbot.models.conversation import Session, SessionState
from ledgerbot.models.conversation import session_state_adapter
from ledgerbot.models.schemas import utcnow

SESSION_TTL = timedelta(minutes=5)


class SessionStore:
    """Explicit multi-step flow state, one row per (user, chat)."""

    def __init__(self, db: TinyDB, ttl: timedelta = SESSION_TTL):
        self.table = db.table("sessions")
        self.ttl = ttl

    async def get(self, user_id: int, chat_id: int) -> Session | None:
        doc = self.table.get(row_key(user_id, chat_id))
        if is_expired(doc, utcnow()):
            return None

        try:
            state = session_state_adapter.validate_python(doc["state"])
        except ValidationError as e:
            raise InvalidState(f"Unreadable session state for {user_id}/{chat_id}") from e

        return Session(
            user_id=user_id,
            chat_id=chat_id,
            state=state,
            created_at=datetime.fromisoformat(doc["created_at"]),
            expires_at=datetime.fromisoformat(doc["expires_at"]),
        )

    async def set(self, user_id: int, chat_id: int, state: SessionState) -> None:
        now = utcnow()
        key = row_key(user_id, chat_id)
        existing = self.table.get(key)
        created_at = now if is_expired(existing, now) else datetime.fromisoformat(existing["created_at"])

        self.table.upsert(
            {
                "user_id": user_id,
                "chat_id": chat_id,
                "state": state.model_dump(mode="json"),
                "created_at": created_at.isoformat(),
                "expires_at": (now + self.ttl).isoformat(),
            },
            key,
        )
        logger.debug("Session {}/{} -> {}", user_id, chat_id, state.type)

    async def clear(self, user_id: int, chat_id: int) -> None:
        self.table.remove(row_key(user_id, chat_id))

    async def sweep_expired(self) -> int:
        removed = self.table.remove(expired(utcnow()))
        return len(removed)
