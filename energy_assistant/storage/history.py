"""Chat history persistence.

Stores every user and assistant message of a session so later turns can
replay the conversation to the model, and serves the paged history view.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, insert, select
from sqlalchemy.engine import Engine

from ..domain.timestamps import parse_timestamp, to_iso8601
from ..providers.base import ChatMessage
from .schema import chat_messages

logger = logging.getLogger(__name__)

VALID_ROLES = ("user", "assistant", "system")


@dataclass
class StoredMessage:
    id: str
    role: str
    content: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": to_iso8601(self.created_at),
        }


class ChatHistoryStore:
    """Read/write access to ``chat_messages`` scoped by user."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def save_message(
        self, session_id: str, role: str, content: str, user_id: str
    ) -> str:
        if role not in VALID_ROLES:
            raise ValueError(f"invalid role: {role}")
        message_id = str(uuid.uuid4())
        with self._engine.begin() as conn:
            conn.execute(
                insert(chat_messages).values(
                    id=message_id,
                    user_id=user_id,
                    session_id=session_id,
                    role=role,
                    content=content,
                    created_at=datetime.now(timezone.utc),
                )
            )
        logger.debug(
            "history.message.saved",
            extra={"session_id": session_id, "role": role, "message_id": message_id},
        )
        return message_id

    def get_conversation(self, session_id: str, user_id: str) -> List[ChatMessage]:
        """Return the session's messages oldest first."""
        stmt = (
            select(chat_messages.c.role, chat_messages.c.content)
            .where(
                and_(
                    chat_messages.c.session_id == session_id,
                    chat_messages.c.user_id == user_id,
                )
            )
            .order_by(chat_messages.c.created_at.asc())
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [ChatMessage(role=row.role, content=row.content) for row in rows]

    def get_user_history(
        self, user_id: str, limit: int = 20, before: Optional[datetime] = None
    ) -> Tuple[List[StoredMessage], bool]:
        """Newest-first page of a user's messages and whether more may exist."""
        stmt = (
            select(
                chat_messages.c.id,
                chat_messages.c.role,
                chat_messages.c.content,
                chat_messages.c.created_at,
            )
            .where(chat_messages.c.user_id == user_id)
            .order_by(chat_messages.c.created_at.desc())
            .limit(limit)
        )
        if before is not None:
            stmt = stmt.where(chat_messages.c.created_at < before)
        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        messages = [
            StoredMessage(
                id=row.id,
                role=row.role,
                content=row.content,
                created_at=parse_timestamp(row.created_at) or row.created_at,
            )
            for row in rows
        ]
        return messages, len(messages) == limit
