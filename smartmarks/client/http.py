"""httpx adapters for the smartmarks backend API.

The backend issues bearer tokens after the browser OAuth round-trip; every
adapter here shares one :class:`TokenAuthProvider` for its credentials.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import webbrowser
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from smartmarks.client.errors import AuthError, FetchError, MutationError
from smartmarks.client.models import (
    EVENT_CREATED,
    EVENT_DELETED,
    ChangeEvent,
    Identity,
    Record,
    RecordCreated,
    RecordDeleted,
    RecordId,
)
from smartmarks.client.ports import AuthStateHandler, ChangeHandler, Unsubscribe
from smartmarks.config import ClientSettings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
DEFAULT_HEADERS = {
    "User-Agent": "smartmarks-client/1.0",
    "Accept": "application/json",
}


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            message = exc.response.json().get("error")
        except ValueError:
            message = None
        return message or f"HTTP {exc.response.status_code}"
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def build_http_client(
    settings: ClientSettings, transport: httpx.AsyncBaseTransport | None = None
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.base_url,
        timeout=settings.timeout,
        headers=DEFAULT_HEADERS,
        transport=transport,
    )


class TokenAuthProvider:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token: str | None = None,
        open_url: Callable[[str], bool] = webbrowser.open,
    ):
        self._http = http
        self._token = token
        self._open_url = open_url
        self._handlers: list[AuthStateHandler] = []

    @property
    def token(self) -> str | None:
        return self._token

    def headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def get_current_session(self) -> Identity | None:
        if not self._token:
            return None
        try:
            response = await self._http.get(
                f"{API_PREFIX}/auth/session", headers=self.headers()
            )
            if response.status_code == 401:
                return None
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AuthError(f"could not read session: {_describe(exc)}") from exc
        return Identity.from_row(response.json()["user"])

    def on_auth_state_change(self, handler: AuthStateHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def login_url(self, provider: str, redirect_to: str) -> str:
        query = urlencode({"provider": provider, "next": redirect_to})
        return f"{str(self._http.base_url).rstrip('/')}/login?{query}"

    async def sign_in_with_provider(self, provider: str, redirect_to: str) -> None:
        url = self.login_url(provider, redirect_to)
        opened = await asyncio.to_thread(self._open_url, url)
        if not opened:
            raise AuthError(f"open {url} in a browser to sign in")

    async def use_token(self, token: str) -> Identity:
        """Finish sign-in with a token issued by the backend's token page."""
        previous, self._token = self._token, token.strip()
        try:
            identity = await self.get_current_session()
        except AuthError:
            self._token = previous
            raise
        if identity is None:
            self._token = previous
            raise AuthError("token was rejected")
        self._emit(identity)
        return identity

    async def sign_out(self) -> None:
        if self._token:
            try:
                response = await self._http.post(
                    f"{API_PREFIX}/auth/token/revoke", headers=self.headers()
                )
                if response.status_code != 401:
                    response.raise_for_status()
            except httpx.HTTPError as exc:
                raise AuthError(f"could not sign out: {_describe(exc)}") from exc
        self._token = None
        self._emit(None)

    def _emit(self, identity: Identity | None) -> None:
        for handler in list(self._handlers):
            handler(identity)


class HttpCollectionStore:
    def __init__(self, http: httpx.AsyncClient, auth: TokenAuthProvider):
        self._http = http
        self._auth = auth

    async def query(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: str = "created_at",
        descending: bool = True,
    ) -> list[Record]:
        # The backend scopes the collection to the token's owner and returns
        # it newest first.
        try:
            response = await self._http.get(
                f"{API_PREFIX}/{collection}", headers=self._auth.headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"could not load {collection}: {_describe(exc)}") from exc
        return [Record.from_row(row) for row in response.json().get("items", [])]

    async def insert(self, collection: str, fields: Mapping[str, Any]) -> Record:
        body = {key: fields[key] for key in ("title", "url") if key in fields}
        try:
            response = await self._http.post(
                f"{API_PREFIX}/{collection}", json=body, headers=self._auth.headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MutationError(_describe(exc)) from exc
        return Record.from_row(response.json())

    async def delete(self, collection: str, record_id: RecordId) -> None:
        try:
            response = await self._http.delete(
                f"{API_PREFIX}/{collection}/{record_id}", headers=self._auth.headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise MutationError(_describe(exc)) from exc


@dataclass(eq=False)
class PollingChannel:
    collection: str
    kind: str
    filters: dict[str, Any]
    handler: ChangeHandler = field(repr=False)


def parse_change(row: Mapping[str, Any]) -> ChangeEvent | None:
    kind = row.get("kind")
    payload = row.get("payload") or {}
    if kind == EVENT_CREATED:
        return RecordCreated(Record.from_row(payload))
    if kind == EVENT_DELETED:
        return RecordDeleted(payload.get("id", row.get("record_id")))
    return None


def _matches(event: ChangeEvent, filters: Mapping[str, Any]) -> bool:
    if not isinstance(event, RecordCreated):
        return True
    row = {"user_id": event.record.owner_id, "id": event.record.id}
    return all(row.get(key, value) == value for key, value in filters.items())


class PollingChangeFeed:
    """Tails the backend's change log and fans events out to subscriptions.

    One polling task serves every channel of the feed, so events of all kinds
    are delivered in the order the backend logged them. The task starts with
    the first subscription and stops when the last one is released.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: TokenAuthProvider,
        interval: float = 1.0,
        page_size: int = 200,
    ):
        self._http = http
        self._auth = auth
        self._interval = interval
        self._page_size = page_size
        self._channels: list[PollingChannel] = []
        self._task: asyncio.Task | None = None
        self.cursor = 0

    async def subscribe(
        self,
        collection: str,
        kind: str,
        filters: Mapping[str, Any],
        handler: ChangeHandler,
    ) -> PollingChannel:
        if self._task is None:
            cursor = await self._head_cursor()
            if self._task is None:
                self.cursor = cursor
                self._task = asyncio.get_running_loop().create_task(
                    self._poll(), name="changes-poll"
                )

        channel = PollingChannel(
            collection=collection, kind=kind, filters=dict(filters), handler=handler
        )
        self._channels.append(channel)
        logger.debug(
            "channel_subscribed",
            extra={"collection": collection, "kind": kind, "cursor": self.cursor},
        )
        return channel

    async def unsubscribe(self, channel: PollingChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
            logger.debug(
                "channel_unsubscribed",
                extra={"collection": channel.collection, "kind": channel.kind},
            )
        if self._channels or self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _head_cursor(self) -> int:
        try:
            response = await self._http.get(
                f"{API_PREFIX}/changes/head", headers=self._auth.headers()
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"could not subscribe: {_describe(exc)}") from exc
        return int(response.json().get("cursor") or 0)

    async def _poll(self) -> None:
        while True:
            try:
                rows, has_more = await self._pull()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("change_poll_failed", extra={"error": _describe(exc)})
                await asyncio.sleep(self._interval)
                continue

            for row in rows:
                self._dispatch(row)
            if not has_more:
                await asyncio.sleep(self._interval)

    async def _pull(self) -> tuple[list[Mapping[str, Any]], bool]:
        response = await self._http.get(
            f"{API_PREFIX}/changes",
            params={"since": self.cursor, "limit": self._page_size},
            headers=self._auth.headers(),
        )
        response.raise_for_status()
        data = response.json()
        self.cursor = int(data.get("cursor") or self.cursor)
        return data.get("events", []), bool(data.get("has_more"))

    def _dispatch(self, row: Mapping[str, Any]) -> None:
        event = parse_change(row)
        if event is None:
            return
        for channel in list(self._channels):
            if channel.kind != event.kind:
                continue
            if row.get("collection", channel.collection) != channel.collection:
                continue
            if not _matches(event, channel.filters):
                continue
            try:
                channel.handler(event)
            except Exception:
                logger.exception("change_handler_failed", extra={"kind": channel.kind})


@dataclass
class RemoteBackend:
    http: httpx.AsyncClient
    auth: TokenAuthProvider
    store: HttpCollectionStore
    feed: PollingChangeFeed

    @classmethod
    def connect(
        cls,
        settings: ClientSettings,
        transport: httpx.AsyncBaseTransport | None = None,
        open_url: Callable[[str], bool] = webbrowser.open,
    ) -> RemoteBackend:
        http = build_http_client(settings, transport=transport)
        auth = TokenAuthProvider(http, token=settings.token, open_url=open_url)
        return cls(
            http=http,
            auth=auth,
            store=HttpCollectionStore(http, auth),
            feed=PollingChangeFeed(http, auth, interval=settings.poll_interval),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
