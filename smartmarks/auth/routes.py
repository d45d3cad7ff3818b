from flask import current_app, flash, redirect, request, session, url_for
from flask_login import current_user, login_required, login_user, logout_user

from smartmarks.auth import auth_bp
from smartmarks.services.oauth import (
    OAuthError,
    build_authorize_url,
    create_state,
    fetch_profile,
    upsert_user,
    verify_state,
)


OAUTH_NONCE_KEY = "oauth_nonce"


def _safe_redirect_target(raw_next: str | None, fallback: str) -> str:
    candidate = (raw_next or "").strip()
    if candidate.startswith("/") and not candidate.startswith("//"):
        return candidate
    return fallback


def _callback_url() -> str:
    return url_for("auth.oauth_callback", _external=True)


@auth_bp.route("/login")
def login():
    next_url = _safe_redirect_target(request.args.get("next"), url_for("web.index"))
    if current_user.is_authenticated:
        return redirect(next_url)

    provider = (request.args.get("provider") or "").strip().lower()
    if provider and provider != current_app.config["OAUTH_PROVIDER"]:
        flash(f"Sign-in provider '{provider}' is not available.", "error")
        return redirect(url_for("web.index"))

    state, nonce = create_state(current_app.config["SECRET_KEY"], next_url)
    try:
        target = build_authorize_url(current_app.config, _callback_url(), state)
    except OAuthError as exc:
        current_app.logger.warning("OAuth sign-in could not start: %s", exc)
        flash(f"Sign-in failed: {exc}", "error")
        return redirect(url_for("web.index"))

    session[OAUTH_NONCE_KEY] = nonce
    return redirect(target)


@auth_bp.route("/auth/callback")
def oauth_callback():
    expected_nonce = session.pop(OAUTH_NONCE_KEY, None)
    provider_error = request.args.get("error")
    if provider_error:
        flash(f"Sign-in was cancelled: {provider_error}", "error")
        return redirect(url_for("web.index"))

    try:
        state = verify_state(
            current_app.config["SECRET_KEY"],
            request.args.get("state") or "",
            current_app.config["OAUTH_STATE_TTL_SECONDS"],
            expected_nonce,
        )
        code = (request.args.get("code") or "").strip()
        if not code:
            raise OAuthError("provider did not return an authorization code")
        profile = fetch_profile(current_app.config, code, _callback_url())
    except OAuthError as exc:
        current_app.logger.warning("OAuth callback rejected: %s", exc)
        flash(f"Sign-in failed: {exc}", "error")
        return redirect(url_for("web.index"))

    user = upsert_user(profile)
    if not user.is_active:
        flash("This account is disabled.", "error")
        return redirect(url_for("web.index"))

    login_user(user)
    current_app.logger.info("User %s signed in via %s", user.id, profile.provider)
    return redirect(
        _safe_redirect_target(state.get("next"), url_for("web.index"))
    )


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return redirect(url_for("web.index"))
