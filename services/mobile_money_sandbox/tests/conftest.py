import os
import tempfile

import pytest

# The engine is built at import time; point it at a throwaway database first.
_DB_DIR = tempfile.mkdtemp(prefix="sandbox-tests-")
os.environ["SANDBOX_DATABASE_URL"] = f"sqlite:///{_DB_DIR}/sandbox.db"
os.environ["SANDBOX_API_KEY"] = "test-api-key"
os.environ["SANDBOX_SECRET_KEY"] = "test-secret-key"
os.environ["SANDBOX_WEBHOOK_SECRET"] = "test-webhook-secret"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def auth():
    return {"Authorization": "Bearer test-api-key"}
