"""Conversation history: the capability the context builder reads turns from."""

from __future__ import annotations

from typing import Protocol

from iterforge.db.models import Message
from iterforge.db.repository import Repository

USER = "user"
ASSISTANT = "assistant"


class ConversationStore(Protocol):
    async def fetch_recent_messages(self, project_id: str, limit: int) -> list[dict[str, str]]: ...

    async def append_message(self, project_id: str, role: str, content: str) -> None: ...


class SqliteConversationStore:
    """Messages table as a conversation store.

    Turns come back oldest → newest as ``{role, content, timestamp}``.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    async def fetch_recent_messages(self, project_id: str, limit: int) -> list[dict[str, str]]:
        if limit <= 0:
            return []
        return [
            {"role": m.role, "content": m.content, "timestamp": m.created_at or ""}
            for m in self._repo.list_recent_messages(project_id, limit)
        ]

    async def append_message(self, project_id: str, role: str, content: str) -> None:
        if role not in (USER, ASSISTANT):
            raise ValueError(f"Unknown message role: {role!r}")
        self._repo.add_message(Message(project_id=project_id, role=role, content=content))
