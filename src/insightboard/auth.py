"""Resolve the caller identity forwarded by the upstream identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

USER_ID_HEADER = "x-user-id"
USER_ROLE_HEADER = "x-user-role"


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def resolve_identity(headers: Mapping[str, str]) -> Identity | None:
    """Return the forwarded identity, or ``None`` when the caller is anonymous."""

    lowered = {key.lower(): value for key, value in headers.items()}
    user_id = (lowered.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        return None
    role = (lowered.get(USER_ROLE_HEADER) or "").strip().lower() or "user"
    return Identity(user_id=user_id, role=role)


__all__ = ["Identity", "resolve_identity"]
