"""Typed values shared by the session, synchronizer and command layers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Union

from dateutil import parser as dt_parser


EVENT_CREATED = "created"
EVENT_DELETED = "deleted"

RecordId = Union[int, str]


def _as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = dt_parser.isoparse(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Identity:
    id: RecordId
    email: str
    full_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Identity:
        return cls(
            id=row["id"],
            email=row.get("email") or "",
            full_name=row.get("full_name") or None,
        )


@dataclass(frozen=True)
class Record:
    id: RecordId
    title: str
    url: str
    owner_id: RecordId
    created_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", _as_utc(self.created_at))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Record:
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            url=row.get("url") or "",
            owner_id=row.get("user_id"),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class RecordCreated:
    record: Record
    kind: Literal["created"] = EVENT_CREATED

    @property
    def record_id(self) -> RecordId:
        return self.record.id


@dataclass(frozen=True)
class RecordDeleted:
    # Delete notifications only carry the key of the removed row.
    record_id: RecordId
    kind: Literal["deleted"] = EVENT_DELETED


ChangeEvent = Union[RecordCreated, RecordDeleted]
