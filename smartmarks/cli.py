from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

import flask.cli

from smartmarks import create_app
from smartmarks.client.errors import AuthError
from smartmarks.client.http import RemoteBackend
from smartmarks.client.page import BookmarkPage
from smartmarks.config import ClientSettings


TOKEN_PAGE = "/tokens"


def render_page(page: BookmarkPage) -> str:
    if page.loading:
        return "Loading..."
    if page.identity is None:
        return "Signed out. Run `smartmarks login` to sign in."

    lines = [
        f"My Bookmarks · {page.identity.display_name}",
        f"{page.count_label}{'  ● Live' if page.is_live else ''}",
    ]
    for record in page.bookmarks:
        lines.append(
            f"  [{record.id}] {record.title} <{record.url}> "
            f"{record.created_at.date().isoformat()}"
        )
    if page.is_empty:
        lines.append("  No bookmarks yet. Add your first bookmark with `smartmarks add`.")
    if page.last_error:
        lines.append(f"! {page.last_error}")
    return "\n".join(lines)


def _parse_record_id(raw: str):
    try:
        return int(raw)
    except ValueError:
        return raw


async def _open_page(settings: ClientSettings) -> tuple[BookmarkPage, RemoteBackend]:
    backend = RemoteBackend.connect(settings)
    page = BookmarkPage(
        backend.auth, backend.store, backend.feed, redirect_to=TOKEN_PAGE
    )
    await page.start()
    await page.synchronizer.wait_idle()
    return page, backend


async def _close_page(page: BookmarkPage, backend: RemoteBackend) -> None:
    await page.close()
    await backend.aclose()


async def run_login(settings: ClientSettings) -> int:
    backend = RemoteBackend.connect(settings)
    try:
        try:
            await backend.auth.sign_in_with_provider("google", TOKEN_PAGE)
        except AuthError as exc:
            print(exc)
        token = await asyncio.to_thread(input, "Paste the token shown after sign-in: ")
        identity = await backend.auth.use_token(token)
    except AuthError as exc:
        print(f"Sign-in failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await backend.aclose()
    print(f"Signed in as {identity.display_name}. Export SMARTMARKS_TOKEN={token.strip()}")
    return 0


async def run_watch(settings: ClientSettings) -> int:
    page, backend = await _open_page(settings)
    page.on_change(lambda current: print(render_page(current), end="\n\n", flush=True))
    print(render_page(page), end="\n\n", flush=True)
    try:
        await asyncio.Event().wait()
    finally:
        await _close_page(page, backend)
    return 0


async def run_list(settings: ClientSettings) -> int:
    page, backend = await _open_page(settings)
    try:
        print(render_page(page))
        return 0 if page.identity else 1
    finally:
        await _close_page(page, backend)


async def run_add(settings: ClientSettings, title: str, url: str) -> int:
    page, backend = await _open_page(settings)
    try:
        page.title, page.url = title, url
        record = await page.submit()
        if record is None:
            print(f"Error adding bookmark: {page.last_error}", file=sys.stderr)
            return 1
        print(f"Added [{record.id}] {record.title}")
        return 0
    finally:
        await _close_page(page, backend)


async def run_remove(settings: ClientSettings, record_id) -> int:
    page, backend = await _open_page(settings)
    try:
        if not await page.remove(record_id):
            print(f"Error deleting bookmark: {page.last_error}", file=sys.stderr)
            return 1
        print(f"Deleted [{record_id}]")
        return 0
    finally:
        await _close_page(page, backend)


def run_server(host: str, port: int) -> int:
    logging.getLogger("werkzeug").disabled = True
    flask.cli.show_server_banner = lambda *x: None

    app = create_app()
    print(f"smartmarks starting on http://{host}:{port}", flush=True)
    app.run(host=host, port=port, debug=False)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="smartmarks")
    p.add_argument("--url", help="backend base URL (SMARTMARKS_URL)")
    p.add_argument("--token", help="API token (SMARTMARKS_TOKEN)")
    p.add_argument("--poll-interval", type=float, help="seconds between change polls")
    p.add_argument("--log-level", default=None)
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the backend web app")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8072)

    sub.add_parser("login", help="sign in through the browser and obtain a token")
    sub.add_parser("watch", help="show bookmarks and follow live changes")
    sub.add_parser("ls", help="list bookmarks")

    add = sub.add_parser("add", help="add a bookmark")
    add.add_argument("title")
    add.add_argument("url")

    rm = sub.add_parser("rm", help="delete a bookmark")
    rm.add_argument("id")
    return p


def settings_from_args(args: argparse.Namespace) -> ClientSettings:
    settings = ClientSettings.from_env()
    if args.url:
        settings.base_url = args.url.rstrip("/")
    if args.token:
        settings.token = args.token
    if args.poll_interval:
        settings.poll_interval = args.poll_interval
    return settings


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or os.environ.get("LOG_LEVEL", "WARNING")).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        return run_server(args.host, args.port)

    settings = settings_from_args(args)
    if args.command == "login":
        coro = run_login(settings)
    elif args.command == "watch":
        coro = run_watch(settings)
    elif args.command == "ls":
        coro = run_list(settings)
    elif args.command == "add":
        coro = run_add(settings, args.title, args.url)
    else:
        coro = run_remove(settings, _parse_record_id(args.id))

    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
