"""Capabilities the client core consumes from the managed backend.

Adapters over HTTP live in :mod:`smartmarks.client.http`; tests provide
in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from smartmarks.client.models import ChangeEvent, Identity, Record, RecordId


AuthStateHandler = Callable[[Identity | None], None]
ChangeHandler = Callable[[ChangeEvent], None]
Unsubscribe = Callable[[], None]


class AuthProvider(Protocol):
    async def get_current_session(self) -> Identity | None:
        ...

    def on_auth_state_change(self, handler: AuthStateHandler) -> Unsubscribe:
        """Register ``handler``; the returned callable removes it."""
        ...

    async def sign_in_with_provider(self, provider: str, redirect_to: str) -> None:
        ...

    async def sign_out(self) -> None:
        ...


class CollectionStore(Protocol):
    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: str = "created_at",
        descending: bool = True,
    ) -> Sequence[Record]:
        ...

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> Record:
        ...

    async def delete(self, collection: str, record_id: RecordId) -> None:
        ...


class ChannelHandle(Protocol):
    collection: str
    kind: str


class ChangeFeed(Protocol):
    async def subscribe(
        self,
        collection: str,
        kind: str,
        filters: Mapping[str, Any],
        handler: ChangeHandler,
    ) -> ChannelHandle:
        """Deliver ``kind`` events for ``collection`` to ``handler`` in arrival order."""
        ...

    async def unsubscribe(self, channel: ChannelHandle) -> None:
        ...
