import pytest

from helpers import create_user, issue_token
from smartmarks import create_app
from smartmarks.config import TestConfig
from smartmarks.extensions import db


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def alice(app):
    with app.app_context():
        user = create_user("alice@example.com", "Alice Example")
        return {"id": user.id, "token": issue_token(user.id)}


@pytest.fixture
def bob(app):
    with app.app_context():
        user = create_user("bob@example.com")
        return {"id": user.id, "token": issue_token(user.id)}
