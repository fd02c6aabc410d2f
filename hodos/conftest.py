# hodos/conftest.py
import os
from types import SimpleNamespace

import pytest

# Must be set before hodos.core.config builds its settings singleton
os.environ.setdefault("SKIP_ENV_VALIDATION", "1")
os.environ.setdefault("ENV", "test")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from hodos.core.config import settings  # noqa: E402
from hodos.core.database import init_engine, create_all_tables, reset_database  # noqa: E402
from hodos.features.notifications import service as notifications  # noqa: E402
from hodos.features.plans.service import seed_plans  # noqa: E402

TEST_ADMIN_KEY = "test-admin-key-123"
TEST_JWT_SECRET = "test-supabase-jwt-secret-at-least-32-bytes"


class FakeQueue:
    """Records enqueued notification jobs instead of talking to Redis."""

    def __init__(self):
        self.jobs = []
        self.fail = False

    def enqueue(self, func, *args, **kwargs):
        if self.fail:
            raise ConnectionError("redis unavailable")
        job = SimpleNamespace(func=func, args=args, kwargs=kwargs)
        self.jobs.append(job)
        return job

    @property
    def templates(self):
        return [job.args[0] for job in self.jobs]

    def sent_to(self, template_key):
        return [job.args[1] for job in self.jobs if job.args[0] == template_key]


@pytest.fixture(scope="session", autouse=True)
def _engine():
    """Bind the app to a shared in-memory SQLite database for the session."""
    init_engine("sqlite://")
    create_all_tables()
    yield


@pytest.fixture(autouse=True)
def _reset_db(_engine):
    """Fresh schema and seeded plan catalog for every test."""
    reset_database()
    seed_plans()
    yield


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Enable notifications and capture them on a fake queue."""
    queue = FakeQueue()
    monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", True)
    monkeypatch.setattr(notifications, "get_queue", lambda: queue)
    return queue


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_KEY", TEST_ADMIN_KEY)
    monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "hybrid")
    monkeypatch.setattr(settings, "ENVIRONMENT", "test")
    return {"X-Admin-Key": TEST_ADMIN_KEY, "X-Reviewer-Id": "reviewer-1"}


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", TEST_JWT_SECRET)
    return TEST_JWT_SECRET


@pytest.fixture
def church_data():
    return {
        "church_name": "Comunidade Luz",
        "cnpj": "12.345.678/0001-90",
        "address": "Rua das Flores, 100 - São Paulo/SP",
        "responsible_name": "Pastor João Silva",
        "responsible_email": "joao@comunidadeluz.org",
        "responsible_phone": "11987654321",
    }
