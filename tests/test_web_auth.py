from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from smartmarks.extensions import db
from smartmarks.models import Bookmark, User
from smartmarks.services import oauth
from smartmarks.services.oauth import OAuthError, OAuthProfile


def _login_session(client, user_id: int):
    with client.session_transaction() as sess:
        sess["_user_id"] = str(user_id)
        sess["_fresh"] = True


def _start_login(client, next_url="/"):
    response = client.get(f"/login?provider=google&next={next_url}")
    assert response.status_code == 302
    location = urlparse(response.headers["Location"])
    return location, parse_qs(location.query)


def test_landing_page_offers_sign_in(client):
    response = client.get("/")
    assert response.status_code == 200
    body = response.get_data(as_text=True)
    assert "Sign in with Google" in body
    assert "/login?provider=google" in body


def test_login_redirects_to_provider(client):
    location, query = _start_login(client)

    assert location.netloc == "accounts.google.com"
    assert query["client_id"] == ["test-client"]
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["http://localhost/auth/callback"]
    assert query["state"][0]


def test_login_rejects_unknown_provider(client):
    response = client.get("/login?provider=github", follow_redirects=True)
    assert "not available" in response.get_data(as_text=True)


def test_login_without_client_configuration_reports_error(client, app):
    app.config["OAUTH_CLIENT_ID"] = ""
    response = client.get("/login", follow_redirects=True)
    assert "OAuth client is not configured" in response.get_data(as_text=True)


def test_callback_signs_user_in(client, app, monkeypatch):
    _, query = _start_login(client, next_url="/tokens")
    captured = {}

    def fake_fetch_profile(config, code, redirect_uri):
        captured["code"] = code
        return OAuthProfile(
            provider="google",
            subject="google-123",
            email="carol@example.com",
            full_name="Carol",
        )

    monkeypatch.setattr("smartmarks.auth.routes.fetch_profile", fake_fetch_profile)
    response = client.get(f"/auth/callback?code=abc&state={query['state'][0]}")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/tokens")
    assert captured["code"] == "abc"
    with app.app_context():
        user = User.query.filter_by(email="carol@example.com").one()
        assert user.oauth_subject == "google-123"

    body = client.get("/").get_data(as_text=True)
    assert "Carol" in body
    assert "0 bookmarks saved" in body


def test_callback_with_tampered_state_is_rejected(client, monkeypatch):
    _start_login(client)
    monkeypatch.setattr(
        "smartmarks.auth.routes.fetch_profile",
        lambda *args: pytest.fail("provider must not be called"),
    )

    response = client.get("/auth/callback?code=abc&state=forged", follow_redirects=True)

    body = response.get_data(as_text=True)
    assert "Sign-in failed" in body
    assert "Sign in with Google" in body


def test_callback_reports_provider_cancellation(client):
    response = client.get("/auth/callback?error=access_denied", follow_redirects=True)
    assert "access_denied" in response.get_data(as_text=True)


def test_fetch_profile_exchanges_code(app):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/token":
            assert b"code=the-code" in request.content
            return httpx.Response(200, json={"access_token": "at-1"})
        assert request.headers["Authorization"] == "Bearer at-1"
        return httpx.Response(
            200, json={"sub": "42", "email": "Dana@Example.com", "name": "Dana"}
        )

    config = dict(app.config)
    config["OAUTH_TOKEN_URL"] = "https://provider.test/token"
    config["OAUTH_USERINFO_URL"] = "https://provider.test/userinfo"

    profile = oauth.fetch_profile(
        config, "the-code", "http://localhost/auth/callback", httpx.MockTransport(handler)
    )

    assert profile == OAuthProfile(
        provider="google", subject="42", email="dana@example.com", full_name="Dana"
    )


def test_fetch_profile_wraps_provider_errors(app):
    transport = httpx.MockTransport(lambda request: httpx.Response(500))
    with pytest.raises(OAuthError):
        oauth.fetch_profile(dict(app.config), "code", "http://localhost/cb", transport)


def test_upsert_user_links_existing_email(app):
    with app.app_context():
        existing = User(email="erin@example.com")
        db.session.add(existing)
        db.session.commit()

        user = oauth.upsert_user(
            OAuthProfile(provider="google", subject="s-1", email="erin@example.com")
        )

        assert user.id == existing.id
        assert user.oauth_subject == "s-1"
        assert User.query.count() == 1


def test_add_form_keeps_inputs_on_error(client, alice):
    _login_session(client, alice["id"])

    response = client.post("/bookmarks", data={"title": "Kept title", "url": "  "})

    assert response.status_code == 400
    body = response.get_data(as_text=True)
    assert 'value="Kept title"' in body
    assert "title and url are required" in body


def test_add_and_delete_through_page(client, app, alice):
    _login_session(client, alice["id"])

    response = client.post(
        "/bookmarks", data={"title": "Docs", "url": "https://docs.test"}
    )
    assert response.status_code == 302

    body = client.get("/").get_data(as_text=True)
    assert "Docs" in body
    assert "1 bookmark saved" in body

    with app.app_context():
        bookmark_id = Bookmark.query.filter_by(title="Docs").one().id
    response = client.post(f"/bookmarks/{bookmark_id}/delete")
    assert response.status_code == 302

    body = client.get("/").get_data(as_text=True)
    assert "No bookmarks yet" in body


def test_token_page_issues_working_token(client, alice):
    _login_session(client, alice["id"])
    body = client.post("/tokens", data={"token_name": "laptop"}).get_data(as_text=True)

    token = body.split('<pre class="token">')[1].split("</pre>")[0]
    client.post("/logout")

    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200


def test_api_token_requires_browser_session(client, alice):
    assert client.post("/api/v1/auth/token").status_code == 401

    _login_session(client, alice["id"])
    response = client.post("/api/v1/auth/token", json={"token_name": "cli"})
    assert response.status_code == 200
    assert response.get_json()["token"].startswith("sm_")
