from datetime import datetime

from tinydb import Query
from tinydb.queries import QueryInstance


def is_expired(doc: dict | None, now: datetime) -> bool:
    """A missing row and a row past ``expires_at`` are the same thing."""
    if doc is None:
        return True
    return datetime.fromisoformat(doc["expires_at"]) <= now


def expired(now: datetime) -> QueryInstance:
    return Query().expires_at.test(lambda value: datetime.fromisoformat(value) <= now)


def row_key(user_id: int, chat_id: int) -> QueryInstance:
    Row = Query()
    return (Row.user_id == user_id) & (Row.chat_id == chat_id)
