from __future__ import annotations

import secrets
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
from itsdangerous import BadData, URLSafeTimedSerializer

from smartmarks.extensions import db
from smartmarks.models import User


class OAuthError(Exception):
    pass


@dataclass
class OAuthProfile:
    provider: str
    subject: str
    email: str
    full_name: str | None = None


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt="oauth-state")


def create_state(secret_key: str, next_url: str) -> tuple[str, str]:
    nonce = secrets.token_urlsafe(16)
    state = _serializer(secret_key).dumps({"nonce": nonce, "next": next_url})
    return state, nonce


def verify_state(
    secret_key: str, state: str, max_age: int, expected_nonce: str | None
) -> dict:
    try:
        payload = _serializer(secret_key).loads(state, max_age=max_age)
    except BadData as exc:
        raise OAuthError("sign-in request expired or was tampered with") from exc
    if not expected_nonce or payload.get("nonce") != expected_nonce:
        raise OAuthError("sign-in request does not match this browser session")
    return payload


def build_authorize_url(config, redirect_uri: str, state: str) -> str:
    if not config["OAUTH_CLIENT_ID"]:
        raise OAuthError("OAuth client is not configured")
    query = urlencode(
        {
            "client_id": config["OAUTH_CLIENT_ID"],
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": config["OAUTH_SCOPES"],
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
    )
    return f"{config['OAUTH_AUTHORIZE_URL']}?{query}"


def _error_message(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return exc.__class__.__name__


def fetch_profile(config, code: str, redirect_uri: str, transport=None) -> OAuthProfile:
    try:
        with httpx.Client(
            timeout=config["OAUTH_HTTP_TIMEOUT"], transport=transport
        ) as client:
            token_response = client.post(
                config["OAUTH_TOKEN_URL"],
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "client_id": config["OAUTH_CLIENT_ID"],
                    "client_secret": config["OAUTH_CLIENT_SECRET"],
                },
                headers={"Accept": "application/json"},
            )
            token_response.raise_for_status()
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise OAuthError("provider did not return an access token")

            profile_response = client.get(
                config["OAUTH_USERINFO_URL"],
                headers={"Authorization": f"Bearer {access_token}"},
            )
            profile_response.raise_for_status()
            data = profile_response.json()
    except httpx.HTTPError as exc:
        raise OAuthError(_error_message(exc)) from exc
    except ValueError as exc:
        raise OAuthError("provider returned malformed JSON") from exc

    subject = str(data.get("sub") or data.get("id") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not subject or not email:
        raise OAuthError("provider profile is missing subject or email")
    return OAuthProfile(
        provider=config["OAUTH_PROVIDER"],
        subject=subject,
        email=email,
        full_name=(data.get("name") or "").strip() or None,
    )


def upsert_user(profile: OAuthProfile) -> User:
    user = User.query.filter_by(
        oauth_provider=profile.provider, oauth_subject=profile.subject
    ).first()
    if not user:
        user = User.query.filter_by(email=profile.email).first()
    if not user:
        user = User(email=profile.email)
        db.session.add(user)

    user.oauth_provider = profile.provider
    user.oauth_subject = profile.subject
    user.email = profile.email
    if profile.full_name:
        user.full_name = profile.full_name
    db.session.commit()
    return user
