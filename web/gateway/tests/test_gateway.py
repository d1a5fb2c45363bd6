import logging
import uuid

import pytest

from gateway.logging_filters import RequestIdFilter
from gateway.middleware import REQUEST_ID_CTX


@pytest.mark.django_db
def test_request_id_is_echoed(client):
    r = client.get("/api/health/", HTTP_X_REQUEST_ID="abc-123")
    assert r["X-Request-ID"] == "abc-123"


@pytest.mark.django_db
def test_request_id_is_generated_and_bounded(client):
    generated = client.get("/api/health/")["X-Request-ID"]
    assert uuid.UUID(generated)
    assert client.get("/api/health/", HTTP_X_REQUEST_ID="x" * 500)["X-Request-ID"] == "x" * 128


def test_log_records_carry_request_id():
    record = logging.LogRecord("orders", logging.INFO, __file__, 1, "msg", None, None)
    token = REQUEST_ID_CTX.set("req-7")
    try:
        assert RequestIdFilter().filter(record)
    finally:
        REQUEST_ID_CTX.reset(token)
    assert record.request_id == "req-7"
