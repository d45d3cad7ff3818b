from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'smartmarks.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    OAUTH_PROVIDER = os.environ.get("OAUTH_PROVIDER", "google")
    OAUTH_CLIENT_ID = os.environ.get("OAUTH_CLIENT_ID", "")
    OAUTH_CLIENT_SECRET = os.environ.get("OAUTH_CLIENT_SECRET", "")
    OAUTH_AUTHORIZE_URL = os.environ.get("OAUTH_AUTHORIZE_URL", GOOGLE_AUTHORIZE_URL)
    OAUTH_TOKEN_URL = os.environ.get("OAUTH_TOKEN_URL", GOOGLE_TOKEN_URL)
    OAUTH_USERINFO_URL = os.environ.get("OAUTH_USERINFO_URL", GOOGLE_USERINFO_URL)
    OAUTH_SCOPES = os.environ.get("OAUTH_SCOPES", "openid email profile")
    OAUTH_STATE_TTL_SECONDS = int(os.environ.get("OAUTH_STATE_TTL_SECONDS", "600"))
    OAUTH_HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))

    CHANGE_PULL_LIMIT = int(os.environ.get("CHANGE_PULL_LIMIT", "200"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    OAUTH_CLIENT_ID = "test-client"
    OAUTH_CLIENT_SECRET = "test-secret"


@dataclass
class ClientSettings:
    base_url: str = "http://127.0.0.1:8072"
    token: str | None = None
    poll_interval: float = 1.0
    timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "ClientSettings":
        return cls(
            base_url=os.environ.get("SMARTMARKS_URL", cls.base_url).rstrip("/"),
            token=os.environ.get("SMARTMARKS_TOKEN") or None,
            poll_interval=float(os.environ.get("SMARTMARKS_POLL_INTERVAL", "1.0")),
            timeout=float(os.environ.get("SMARTMARKS_TIMEOUT", "10")),
        )
