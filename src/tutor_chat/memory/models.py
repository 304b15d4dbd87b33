from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


@dataclass(frozen=True)
class Message:
    id: str
    content: str
    is_user: bool
    timestamp: datetime
    translated_content: str | None = None
    language: str | None = None

    @classmethod
    def create(
        cls,
        content: str,
        *,
        is_user: bool,
        language: str | None = None,
        translated_content: str | None = None,
        timestamp: datetime | None = None,
    ) -> Message:
        prefix = "user" if is_user else "ai"
        return cls(
            id=f"{prefix}_{uuid4().hex}",
            content=content,
            is_user=is_user,
            timestamp=timestamp or utc_now(),
            translated_content=translated_content,
            language=language,
        )

    @property
    def role(self) -> str:
        return "user" if self.is_user else "assistant"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "isUser": self.is_user,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.translated_content is not None:
            data["translatedContent"] = self.translated_content
        if self.language is not None:
            data["language"] = self.language
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            is_user=bool(data["isUser"]),
            timestamp=parse_timestamp(str(data["timestamp"])),
            translated_content=data.get("translatedContent"),
            language=data.get("language"),
        )


@dataclass
class Session:
    id: str
    user_id: str
    title: str
    language: str
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)

    def metadata_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "language": self.language,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_metadata(cls, data: dict[str, Any], messages: list[Message] | None = None) -> Session:
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            title=str(data["title"]),
            language=str(data["language"]),
            created_at=parse_timestamp(str(data["createdAt"])),
            updated_at=parse_timestamp(str(data["updatedAt"])),
            messages=list(messages or []),
        )


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    day: date
    count: int
    reset_at: datetime
