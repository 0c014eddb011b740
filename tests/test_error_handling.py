import json
import logging

from fastapi.testclient import TestClient

from conftest import register_company
from erpledger.main import app
from erpledger.services import stock_ledger


class _CollectingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines: list[dict] = []

    def emit(self, record):
        self.lines.append(json.loads(record.getMessage()))


def test_unhandled_error_keeps_request_id(test_context, monkeypatch):
    client, _ = test_context
    headers = register_company(client, email="crash@example.com")

    def broken(*args, **kwargs):
        raise RuntimeError("level cache unavailable")

    monkeypatch.setattr(stock_ledger, "get_current_levels", broken)
    handler = _CollectingHandler()
    api_logger = logging.getLogger("erpledger.api")
    api_logger.addHandler(handler)
    try:
        crashing_client = TestClient(app, raise_server_exceptions=False)
        res = crashing_client.get("/stock", headers={**headers, "X-Request-ID": "req-crash-1"})
    finally:
        api_logger.removeHandler(handler)

    assert res.status_code == 500, res.text
    error = res.json()["error"]
    assert error["code"] == "internal_error"
    assert error["request_id"] == "req-crash-1"

    [logged] = [line for line in handler.lines if line["event"] == "unhandled_exception"]
    assert logged["request_id"] == "req-crash-1"
    assert logged["error"] == "level cache unavailable"
    assert logged["path"] == "/stock"


def test_domain_error_envelope_carries_request_id(test_context):
    client, _ = test_context
    headers = register_company(client, email="envelope@example.com")

    res = client.get("/orders/missing-order", headers={**headers, "X-Request-ID": "req-missing-1"})
    assert res.status_code == 404, res.text
    assert res.headers["X-Request-ID"] == "req-missing-1"
    error = res.json()["error"]
    assert error["code"] == "not_found"
    assert error["request_id"] == "req-missing-1"
    assert error["path"] == "/orders/missing-order"
