"""Concrete implementations for conversation persistence.

Stores are append-only logs of messages grouped into conversations. They do
not check ownership: callers scope every operation to the caller identity.
"""

import json
import itertools
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .errors import ConversationNotFoundError
from .models import ChatMessage, Conversation, utcnow


def next_timestamp(last: Optional[datetime]) -> datetime:
    """``now``, bumped past ``last`` so per-conversation order is strict."""
    now = utcnow()
    if last is not None and now <= last:
        return last + timedelta(microseconds=1)
    return now


class Store(ABC):
    """Interface for saving and loading conversation data."""

    @abstractmethod
    def create_conversation(self, owner_id: str, title: str) -> int:
        """Creates a conversation owned by ``owner_id`` and returns its id."""
        pass

    @abstractmethod
    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        pass

    @abstractmethod
    def touch_conversation(self, conversation_id: int) -> None:
        """Bumps ``updated_at``."""
        pass

    @abstractmethod
    def append_message(
        self, conversation_id: int, role: str, content: Optional[str], **extra: Any
    ) -> int:
        """Appends a message, assigns its timestamp and returns its id.

        ``extra`` may hold ``tool_call_id``, ``tool_calls`` and
        ``tool_results``.
        """
        pass

    @abstractmethod
    def list_messages(self, conversation_id: int) -> List[ChatMessage]:
        """All messages of a conversation, oldest first."""
        pass

    @abstractmethod
    def list_conversations(self, owner_id: str) -> List[Conversation]:
        """Conversations of ``owner_id``, most recently updated first."""
        pass

    @abstractmethod
    def delete_conversation(self, conversation_id: int) -> None:
        """Deletes a conversation and all of its messages."""
        pass


class InMemory(Store):
    """Keeps conversations and messages in dictionaries."""

    def __init__(self):
        self._conversations: Dict[int, Conversation] = {}
        self._messages: Dict[int, List[ChatMessage]] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)

    def _require(self, conversation_id: int) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def create_conversation(self, owner_id, title):
        now = utcnow()
        conversation = Conversation(
            id=next(self._conversation_ids),
            owner_id=str(owner_id),
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        return conversation.id

    def get_conversation(self, conversation_id):
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    def touch_conversation(self, conversation_id):
        conversation = self._require(conversation_id)
        conversation.updated_at = next_timestamp(conversation.updated_at)

    def append_message(self, conversation_id, role, content, **extra):
        self._require(conversation_id)
        log = self._messages[conversation_id]
        message = ChatMessage(
            id=next(self._message_ids),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=next_timestamp(log[-1].created_at if log else None),
            **extra,
        )
        log.append(message)
        self.touch_conversation(conversation_id)
        return message.id

    def list_messages(self, conversation_id):
        return [m.model_copy(deep=True) for m in self._messages.get(conversation_id, [])]

    def list_conversations(self, owner_id):
        owned = [c for c in self._conversations.values() if c.owner_id == str(owner_id)]
        owned.sort(key=lambda c: (c.updated_at, c.id), reverse=True)
        return [c.model_copy(deep=True) for c in owned]

    def delete_conversation(self, conversation_id):
        self._conversations.pop(conversation_id, None)
        self._messages.pop(conversation_id, None)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    conversation_id INTEGER NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT,
    created_at TEXT NOT NULL,
    tool_call_id TEXT,
    tool_calls TEXT,
    tool_results TEXT
);
CREATE INDEX IF NOT EXISTS idx_messages_order ON messages (conversation_id, created_at, id);
CREATE INDEX IF NOT EXISTS idx_conversations_owner ON conversations (owner_id, updated_at);
"""


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


class SQLite(Store):
    """Saves conversations in a SQLite database."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        with self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def _row_to_conversation(self, row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_message(self, row: sqlite3.Row) -> ChatMessage:
        return ChatMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            tool_call_id=row["tool_call_id"],
            tool_calls=json.loads(row["tool_calls"]) if row["tool_calls"] else None,
            tool_results=json.loads(row["tool_results"]) if row["tool_results"] else None,
        )

    def _updated_at(self, conversation_id: int) -> datetime:
        row = self._conn.execute(
            "SELECT updated_at FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        if row is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return datetime.fromisoformat(row["updated_at"])

    def create_conversation(self, owner_id, title):
        now = _ts(utcnow())
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO conversations (owner_id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (str(owner_id), title, now, now),
            )
            return cursor.lastrowid

    def get_conversation(self, conversation_id):
        row = self._conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        return self._row_to_conversation(row) if row else None

    def touch_conversation(self, conversation_id):
        with self._lock, self._conn:
            self._touch(conversation_id)

    def _touch(self, conversation_id: int) -> None:
        updated = next_timestamp(self._updated_at(conversation_id))
        self._conn.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (_ts(updated), conversation_id),
        )

    def append_message(self, conversation_id, role, content, **extra):
        # Validate before writing anything.
        message = ChatMessage(conversation_id=conversation_id, role=role, content=content, **extra)
        with self._lock, self._conn:
            self._updated_at(conversation_id)
            row = self._conn.execute(
                "SELECT MAX(created_at) AS last FROM messages WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
            last = datetime.fromisoformat(row["last"]) if row["last"] else None
            created_at = next_timestamp(last)
            tool_calls = (
                json.dumps([call.model_dump() for call in message.tool_calls])
                if message.tool_calls
                else None
            )
            tool_results = json.dumps(message.tool_results, default=str) if message.tool_results else None
            cursor = self._conn.execute(
                "INSERT INTO messages (conversation_id, role, content, created_at, tool_call_id, "
                "tool_calls, tool_results) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    conversation_id,
                    role,
                    content,
                    _ts(created_at),
                    message.tool_call_id,
                    tool_calls,
                    tool_results,
                ),
            )
            self._touch(conversation_id)
            return cursor.lastrowid

    def list_messages(self, conversation_id):
        rows = self._conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at, id",
            (conversation_id,),
        ).fetchall()
        return [self._row_to_message(row) for row in rows]

    def list_conversations(self, owner_id):
        rows = self._conn.execute(
            "SELECT * FROM conversations WHERE owner_id = ? ORDER BY updated_at DESC, id DESC",
            (str(owner_id),),
        ).fetchall()
        return [self._row_to_conversation(row) for row in rows]

    def delete_conversation(self, conversation_id):
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
