from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from dateutil import parser as dt_parser
from flask_login import UserMixin


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = dt_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Bookmark:
    id: str
    url: str
    title: str
    created_at: datetime
    owner_id: str

    @classmethod
    def from_row(cls, row: dict) -> "Bookmark":
        return cls(
            id=str(row["id"]),
            url=row["url"],
            title=row.get("title") or "",
            created_at=parse_timestamp(row["created_at"]),
            owner_id=str(row["owner_id"]),
        )

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "owner_id": self.owner_id,
        }


class SessionUser(UserMixin):
    def __init__(
        self,
        id: str,
        email: str | None = None,
        full_name: str | None = None,
        avatar_url: str | None = None,
    ):
        self.id = id
        self.email = email
        self.full_name = full_name
        self.avatar_url = avatar_url

    @classmethod
    def from_payload(cls, payload: dict) -> "SessionUser":
        metadata = payload.get("user_metadata") or {}
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            full_name=metadata.get("full_name"),
            avatar_url=metadata.get("avatar_url"),
        )

    def __repr__(self) -> str:
        return f"<SessionUser {self.id}>"
