"""File-backed storage for saved insight boards."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass(slots=True)
class InsightBoard:
    """A saved insight result together with the text it was generated from."""

    id: str
    user_id: str
    title: str
    insights: dict[str, Any]
    source_text: str
    created_at: str
    updated_at: str
    file_name: str | None = None
    model: str | None = None
    temperature: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "insights": self.insights,
            "sourceText": self.source_text,
            "fileName": self.file_name,
            "model": self.model,
            "temperature": self.temperature,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def summary_payload(self) -> dict[str, Any]:
        concepts = self.insights.get("keyConcepts") or []
        return {
            "id": self.id,
            "title": self.title,
            "fileName": self.file_name,
            "conceptCount": len(concepts),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class InsightBoardStore:
    """Persist boards to a single JSON document, scoped by user id."""

    def __init__(self, root: Path) -> None:
        self._root = root
        self._boards_file = root / "insight_boards.json"
        self._lock = threading.Lock()
        self._root.mkdir(parents=True, exist_ok=True)

    def create_board(
        self,
        *,
        user_id: str,
        title: str,
        insights: Mapping[str, Any],
        source_text: str,
        file_name: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> InsightBoard:
        now = self._now()
        board = InsightBoard(
            id=f"board_{uuid4().hex}",
            user_id=user_id,
            title=title.strip() or "Untitled board",
            insights=dict(insights),
            source_text=source_text,
            created_at=now,
            updated_at=now,
            file_name=file_name,
            model=model,
            temperature=temperature,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            payload = self._read()
            payload["boards"][board.id] = asdict(board)
            self._write(payload)
        logger.info("board.created id=%s user=%s", board.id, user_id)
        return board

    def get_board(self, board_id: str, user_id: str) -> InsightBoard | None:
        with self._lock:
            item = self._read()["boards"].get(board_id)
        if item is None or item.get("user_id") != user_id:
            return None
        return InsightBoard(**item)

    def list_boards(self, user_id: str) -> list[InsightBoard]:
        with self._lock:
            items = list(self._read()["boards"].values())
        boards = [InsightBoard(**item) for item in items if item.get("user_id") == user_id]
        # Boards created within the same microsecond keep newest-first insertion order.
        return sorted(reversed(boards), key=lambda board: board.created_at, reverse=True)

    def update_board(
        self,
        board_id: str,
        user_id: str,
        *,
        title: str | Any = _UNSET,
        metadata: Mapping[str, Any] | Any = _UNSET,
    ) -> InsightBoard | None:
        with self._lock:
            payload = self._read()
            item = payload["boards"].get(board_id)
            if item is None or item.get("user_id") != user_id:
                return None
            if title is not _UNSET and isinstance(title, str) and title.strip():
                item["title"] = title.strip()
            if metadata is not _UNSET and metadata is not None:
                item["metadata"] = {**item.get("metadata", {}), **dict(metadata)}
            item["updated_at"] = self._now()
            self._write(payload)
        logger.info("board.updated id=%s user=%s", board_id, user_id)
        return InsightBoard(**item)

    def delete_board(self, board_id: str, user_id: str) -> bool:
        with self._lock:
            payload = self._read()
            item = payload["boards"].get(board_id)
            if item is None or item.get("user_id") != user_id:
                return False
            del payload["boards"][board_id]
            self._write(payload)
        logger.info("board.deleted id=%s user=%s", board_id, user_id)
        return True

    def _read(self) -> dict[str, Any]:
        if not self._boards_file.exists():
            return {"boards": {}}
        with self._boards_file.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        data.setdefault("boards", {})
        return data

    def _write(self, data: dict[str, Any]) -> None:
        with self._boards_file.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, ensure_ascii=False)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()


__all__ = ["InsightBoard", "InsightBoardStore"]
