# magicpaws/conftest.py
import os
import tempfile
import time
from decimal import Decimal
from pathlib import Path

import jwt
import pytest

# Configure the environment before any magicpaws module builds its settings
_DB_DIR = Path(tempfile.mkdtemp(prefix="magicpaws-tests-"))
os.environ["ENV"] = "test"
os.environ["TEST_DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["AUTH_SECRET"] = "test-auth-secret-with-enough-length-for-hs256"
os.environ["ADMIN_EMAIL"] = "admin@magicpaws.test"
os.environ.setdefault("BUSINESS_TIMEZONE", "America/Los_Angeles")
for _key in ("DATABASE_URL", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "RESEND_API_KEY", "CRON_SECRET"):
    os.environ.pop(_key, None)

TEST_AUTH_SECRET = os.environ["AUTH_SECRET"]
ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all tables once per session on the throwaway SQLite file."""
    from magicpaws.core.database import create_all_tables

    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Empty every table before each test (children first)."""
    from sqlalchemy import delete
    from magicpaws.core.database import get_db_session, metadata

    with get_db_session() as session:
        for table in reversed(metadata.sorted_tables):
            session.execute(delete(table))
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_metrics():
    from magicpaws.core.metrics import METRICS

    METRICS.reset()
    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from magicpaws.main import app

    return TestClient(app)


def make_token(user_id: str, email: str, name: str = None, expires_in: int = 3600, secret: str = None) -> str:
    now = int(time.time())
    claims = {"sub": user_id, "email": email, "iat": now, "exp": now + expires_in}
    if name:
        claims["name"] = name
    return jwt.encode(claims, secret or TEST_AUTH_SECRET, algorithm="HS256")


@pytest.fixture
def token_for():
    return make_token


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a (user_id, email) pair."""
    def _headers(user_id: str = "user_alice", email: str = "alice@example.com", name: str = "Alice"):
        return {"Authorization": f"Bearer {make_token(user_id, email, name)}"}
    return _headers


@pytest.fixture
def alice():
    from magicpaws.features.users.service import sign_in

    return sign_in("user_alice", "alice@example.com", "Alice")


@pytest.fixture
def bob():
    from magicpaws.features.users.service import sign_in

    return sign_in("user_bob", "bob@example.com", "Bob")


@pytest.fixture
def admin():
    from magicpaws.features.users.service import sign_in

    return sign_in("user_admin", ADMIN_EMAIL, "Samantha")


@pytest.fixture
def catalog():
    """
    One tier with a published module holding:
    - a free preview lesson
    - a paid lesson
    - an unpublished lesson
    """
    from magicpaws.features.content.service import create_lesson, create_module, create_tier

    tier = create_tier("Puppy Basics", Decimal("49.00"), slug="puppy-basics", description="Foundations")
    module = create_module(tier["id"], "Getting Started")
    preview = create_lesson(
        module["id"], "Welcome", youtube_video_id="vid_welcome", video_duration=120, is_free_preview=True
    )
    paid = create_lesson(
        module["id"], "Sit and Stay", youtube_video_id="vid_sit", video_duration=300, content="Step one..."
    )
    hidden = create_lesson(module["id"], "Draft Lesson", is_published=False)
    return {"tier": tier, "module": module, "preview": preview, "paid": paid, "hidden": hidden}


@pytest.fixture
def grant_purchase():
    from magicpaws.features.purchases.service import fulfill_tier_purchase

    def _grant(user_id: str, tier_id: str):
        return fulfill_tier_purchase(user_id, tier_id, Decimal("49.00"), "pi_test")
    return _grant
