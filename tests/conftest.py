import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="cmdb-tests-")
DB_PATH = os.path.join(_DB_DIR, "cmdb.db")

# settings are read at import time, so the environment must be set first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{DB_PATH}"
os.environ["AUTH_MODE"] = "disabled"
os.environ["DEV_USERNAME"] = "tester"
os.environ["DEV_ROLE"] = "admin"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["HTTPS_ONLY"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from cmdb.services.ipam import IpamService  # noqa: E402


def _remove_db():
    if os.path.exists(DB_PATH):
        os.remove(DB_PATH)


@pytest.fixture
def ipam():
    return IpamService()


@pytest.fixture
def fresh_db():
    _remove_db()
    yield DB_PATH
    _remove_db()


@pytest.fixture
def app(fresh_db):
    from cmdb.main import app as fastapi_app
    return fastapi_app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
