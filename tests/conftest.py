import os
from datetime import datetime, timezone

import pytest

from mindspend.db.database import init_db, override_db_path
from mindspend.db.models import Profile


@pytest.fixture(scope="session", autouse=True)
def set_test_env(tmp_path_factory):
    db_file = tmp_path_factory.mktemp("data") / "test.db"
    os.environ["DB_PATH"] = str(db_file)
    os.environ["SECRET_KEY"] = "test-secret-key-for-testing"
    os.environ["MINDSPEND_COOL_OFF_SECONDS"] = "0"
    os.environ["MINDSPEND_BASE_URL"] = "http://testserver"


@pytest.fixture
def db(tmp_path):
    """A fresh database for one test."""
    with override_db_path(tmp_path / "unit.db"):
        init_db()
        yield


@pytest.fixture
def profile():
    return Profile(hourly_wage=20.0, working_days_per_year=220, monthly_expenses=3000.0)


@pytest.fixture
def now():
    return datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def fresh_client(set_test_env):
    """A client with no cookies."""
    from fastapi.testclient import TestClient
    from app.main import app
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def guest_client(fresh_client):
    """A guest with a profile of $20/h and $3000 monthly expenses."""
    fresh_client.get("/")
    fresh_client.post("/auth/guest")
    fresh_client.post("/setup", data={
        "income_type": "hourly", "amount": "20", "working_days": "220", "monthly_expenses": "3000",
    })
    return fresh_client
