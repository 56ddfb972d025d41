# tests/conftest.py
import os
import tempfile

import pytest

# Must be in place before the app (and the engine) is created
os.environ.setdefault("DATABASE_URL", "sqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="ledger-tests-"), "test.db"))
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("METRICS_ENABLED", "1")
os.environ.setdefault("AUTO_CREATE_SCHEMA", "1")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_webhook_secret")
os.environ.setdefault("AUDIT_HMAC_SECRET", "test-audit-secret")

from app import create_app  # noqa: E402
from models.base import Base, init_engine_and_session  # noqa: E402
from models.users_db import create_user, create_organization, add_member  # noqa: E402
from tests.utils import login_user  # noqa: E402


@pytest.fixture(scope="session")
def app():
    return create_app({"TESTING": True, "WTF_CSRF_ENABLED": False})


@pytest.fixture(scope="session")
def db_engine(app):
    engine, _Session = init_engine_and_session()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(autouse=True)
def _db_clean(db_engine):
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield


@pytest.fixture()
def client(app, db_engine):
    return app.test_client()


@pytest.fixture
def owner():
    """An org owner with an email, and their organization."""
    create_user("alice", "alice-pass", role="user", email="alice@example.com")
    org_id = create_organization("Acme Ltd", "alice")
    return {"username": "alice", "password": "alice-pass", "org_id": org_id}


@pytest.fixture
def member(owner):
    create_user("bob", "bob-pass", role="user", email="bob@example.com")
    add_member(owner["org_id"], "bob", role="member")
    return {"username": "bob", "password": "bob-pass", "org_id": owner["org_id"]}


@pytest.fixture
def owner_client(client, owner):
    r = login_user(client, owner["username"], owner["password"])
    assert r.status_code == 200
    yield client
    client.post("/logout")


@pytest.fixture
def member_client(client, member):
    r = login_user(client, member["username"], member["password"])
    assert r.status_code == 200
    yield client
    client.post("/logout")
