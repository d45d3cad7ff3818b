import asyncio

import httpx

from smartmarks.extensions import db
from smartmarks.models import ApiToken, User


def create_user(email: str, full_name=None) -> User:
    user = User(email=email, full_name=full_name, oauth_provider="google")
    user.oauth_subject = f"sub-{email}"
    db.session.add(user)
    db.session.commit()
    return user


def issue_token(user_id: int, name="pytest") -> str:
    token, token_hash = ApiToken.issue_token()
    db.session.add(ApiToken(user_id=user_id, name=name, token_hash=token_hash))
    db.session.commit()
    return token


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {user['token']}"}


def flask_transport(client) -> httpx.MockTransport:
    """Route httpx requests into a Flask test client."""

    def handler(request: httpx.Request) -> httpx.Response:
        headers = {
            key: value
            for key, value in request.headers.items()
            if key.lower() not in {"host", "content-length"}
        }
        response = client.open(
            request.url.raw_path.decode("ascii"),
            method=request.method,
            headers=headers,
            data=request.content,
        )
        return httpx.Response(
            response.status_code,
            headers={"Content-Type": response.headers.get("Content-Type", "")},
            content=response.get_data(),
        )

    return httpx.MockTransport(handler)


async def eventually(predicate, timeout=2.0, interval=0.01):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
