"""File-backed chat and dialogue records with their message history."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from .models import ChatTurn

logger = logging.getLogger(__name__)

_UNSET: Any = object()
MESSAGE_ROLES = frozenset({"system", "user", "assistant"})


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class ConversationMessage:
    id: str
    role: str
    content: str
    created_at: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "createdAt": self.created_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationMessage":
        return cls(
            id=data.get("id", uuid4().hex),
            role=data.get("role", "user"),
            content=data.get("content", ""),
            created_at=data.get("created_at", _utc_now()),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(slots=True)
class Conversation:
    """A chat or dialogue owned by one user."""

    id: str
    user_id: str
    title: str
    created_at: str
    updated_at: str
    messages: list[ConversationMessage] = field(default_factory=list)
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conversation":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data.get("title", ""),
            created_at=data.get("created_at", _utc_now()),
            updated_at=data.get("updated_at", _utc_now()),
            messages=[ConversationMessage.from_dict(item) for item in data.get("messages", [])],
            model=data.get("model"),
            system_prompt=data.get("system_prompt"),
            temperature=data.get("temperature"),
            metadata=dict(data.get("metadata") or {}),
        )

    def history(self) -> list[ChatTurn]:
        return [ChatTurn(role=message.role, content=message.content) for message in self.messages]

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "model": self.model,
            "systemPrompt": self.system_prompt,
            "temperature": self.temperature,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messages": [message.to_payload() for message in self.messages],
        }

    def summary_payload(self) -> dict[str, Any]:
        visible = [message for message in self.messages if message.role != "system"]
        last = visible[-1] if visible else None
        return {
            "id": self.id,
            "title": self.title,
            "model": self.model,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "messageCount": len(visible),
            "lastMessageContent": last.content if last else None,
            "lastMessageDate": last.created_at if last else None,
        }


class ConversationStore:
    """Persist conversations of one kind (``chat`` or ``dialogue``) to a JSON file."""

    def __init__(self, root: Path, *, kind: str = "chat") -> None:
        self._root = root
        self._kind = kind
        self._path = root / f"{kind}s.json"
        self._lock = threading.Lock()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def kind(self) -> str:
        return self._kind

    def create_conversation(
        self,
        *,
        user_id: str,
        title: str,
        model: str | None = None,
        system_prompt: str | None = None,
        temperature: float | None = None,
        metadata: Mapping[str, Any] | None = None,
        initial_message: str | None = None,
    ) -> Conversation:
        now = _utc_now()
        conversation = Conversation(
            id=f"{self._kind}_{uuid4().hex}",
            user_id=user_id,
            title=title.strip() or f"New {self._kind}",
            created_at=now,
            updated_at=now,
            model=model,
            system_prompt=system_prompt or None,
            temperature=temperature,
            metadata=dict(metadata or {}),
        )
        if system_prompt:
            conversation.messages.append(_new_message("system", system_prompt))
        if initial_message and initial_message.strip():
            conversation.messages.append(_new_message("user", initial_message))
        with self._lock:
            payload = self._read()
            payload["conversations"][conversation.id] = asdict(conversation)
            self._write(payload)
        logger.info("conversation.created kind=%s id=%s user=%s", self._kind, conversation.id, user_id)
        return conversation

    def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        with self._lock:
            item = self._read()["conversations"].get(conversation_id)
        if item is None or item.get("user_id") != user_id:
            return None
        return Conversation.from_dict(item)

    def list_conversations(self, user_id: str) -> list[Conversation]:
        with self._lock:
            items = list(self._read()["conversations"].values())
        owned = [Conversation.from_dict(item) for item in items if item.get("user_id") == user_id]
        return sorted(reversed(owned), key=lambda conversation: conversation.updated_at, reverse=True)

    def update_conversation(
        self,
        conversation_id: str,
        user_id: str,
        *,
        title: str | Any = _UNSET,
        model: str | None | Any = _UNSET,
        system_prompt: str | None | Any = _UNSET,
        temperature: float | None | Any = _UNSET,
        metadata: Mapping[str, Any] | Any = _UNSET,
    ) -> Conversation | None:
        with self._lock:
            payload = self._read()
            item = payload["conversations"].get(conversation_id)
            if item is None or item.get("user_id") != user_id:
                return None
            conversation = Conversation.from_dict(item)
            if title is not _UNSET and isinstance(title, str) and title.strip():
                conversation.title = title.strip()
            if model is not _UNSET:
                conversation.model = model or None
            if temperature is not _UNSET:
                conversation.temperature = temperature
            if metadata is not _UNSET and metadata is not None:
                conversation.metadata = {**conversation.metadata, **dict(metadata)}
            if system_prompt is not _UNSET:
                _replace_system_prompt(conversation, system_prompt or None)
            conversation.updated_at = _utc_now()
            payload["conversations"][conversation_id] = asdict(conversation)
            self._write(payload)
        logger.info("conversation.updated kind=%s id=%s user=%s", self._kind, conversation_id, user_id)
        return conversation

    def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        with self._lock:
            payload = self._read()
            item = payload["conversations"].get(conversation_id)
            if item is None or item.get("user_id") != user_id:
                return False
            del payload["conversations"][conversation_id]
            self._write(payload)
        logger.info("conversation.deleted kind=%s id=%s user=%s", self._kind, conversation_id, user_id)
        return True

    def add_message(
        self,
        conversation_id: str,
        user_id: str,
        *,
        role: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> ConversationMessage | None:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid message role: {role}")
        message = _new_message(role, content, metadata)
        with self._lock:
            payload = self._read()
            item = payload["conversations"].get(conversation_id)
            if item is None or item.get("user_id") != user_id:
                return None
            item.setdefault("messages", []).append(asdict(message))
            item["updated_at"] = message.created_at
            self._write(payload)
        logger.debug("conversation.message.added kind=%s id=%s role=%s", self._kind, conversation_id, role)
        return message

    def delete_message(self, conversation_id: str, user_id: str, message_id: str) -> bool:
        with self._lock:
            payload = self._read()
            item = payload["conversations"].get(conversation_id)
            if item is None or item.get("user_id") != user_id:
                return False
            messages = item.get("messages", [])
            remaining = [message for message in messages if message.get("id") != message_id]
            if len(remaining) == len(messages):
                return False
            item["messages"] = remaining
            self._write(payload)
        return True

    def clear_messages(self, conversation_id: str, user_id: str, *, keep_system: bool = True) -> int | None:
        """Drop the message history and return how many messages were removed."""

        with self._lock:
            payload = self._read()
            item = payload["conversations"].get(conversation_id)
            if item is None or item.get("user_id") != user_id:
                return None
            messages = item.get("messages", [])
            kept = [message for message in messages if keep_system and message.get("role") == "system"]
            item["messages"] = kept
            item["updated_at"] = _utc_now()
            self._write(payload)
        removed = len(messages) - len(kept)
        logger.info("conversation.cleared kind=%s id=%s removed=%s", self._kind, conversation_id, removed)
        return removed

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {"conversations": {}}
        with self._path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        data.setdefault("conversations", {})
        return data

    def _write(self, data: dict[str, Any]) -> None:
        with self._path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)


def _new_message(role: str, content: str, metadata: Mapping[str, Any] | None = None) -> ConversationMessage:
    return ConversationMessage(
        id=uuid4().hex,
        role=role,
        content=content,
        created_at=_utc_now(),
        metadata=dict(metadata or {}),
    )


def _replace_system_prompt(conversation: Conversation, prompt: str | None) -> None:
    conversation.system_prompt = prompt
    for message in conversation.messages:
        if message.role == "system":
            if prompt:
                message.content = prompt
            else:
                conversation.messages.remove(message)
            return
    if prompt:
        conversation.messages.insert(0, _new_message("system", prompt))


__all__ = ["Conversation", "ConversationMessage", "ConversationStore", "MESSAGE_ROLES"]
