from __future__ import annotations

from flask import current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required

from smartmarks.api.routes import issue_api_token
from smartmarks.services.bookmarks import (
    BookmarkInputError,
    create_bookmark,
    delete_bookmark,
    list_bookmarks,
)
from smartmarks.web import web_bp


def count_label(count: int) -> str:
    return f"{count} bookmark{'' if count == 1 else 's'} saved"


def _render_index(title: str = "", url: str = "", status: int = 200):
    if not current_user.is_authenticated:
        return render_template("landing.html"), status

    bookmarks = list_bookmarks(current_user.id)
    return (
        render_template(
            "index.html",
            bookmarks=bookmarks,
            count_label=count_label(len(bookmarks)),
            form_title=title,
            form_url=url,
        ),
        status,
    )


@web_bp.route("/")
def index():
    return _render_index()


@web_bp.route("/bookmarks", methods=["POST"])
@login_required
def bookmarks_create():
    title = request.form.get("title") or ""
    url = request.form.get("url") or ""
    try:
        create_bookmark(current_user.id, title, url)
    except BookmarkInputError as exc:
        flash(f"Error adding bookmark: {exc}", "error")
        return _render_index(title=title, url=url, status=400)
    return redirect(url_for("web.index"))


@web_bp.route("/bookmarks/<int:bookmark_id>/delete", methods=["POST"])
@login_required
def bookmarks_delete(bookmark_id: int):
    if not delete_bookmark(current_user.id, bookmark_id):
        current_app.logger.warning(
            "Delete of missing bookmark %s by user %s", bookmark_id, current_user.id
        )
        flash("Error deleting bookmark: it no longer exists.", "error")
    return redirect(url_for("web.index"))


@web_bp.route("/tokens", methods=["GET", "POST"])
@login_required
def tokens():
    token = None
    if request.method == "POST":
        token_name = (request.form.get("token_name") or "smartmarks CLI").strip()
        token = issue_api_token(current_user.id, token_name)
    return render_template("tokens.html", token=token)
