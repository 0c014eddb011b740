import json
from pathlib import Path

from erpledger.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_error_envelope_is_documented():
    schema = app.openapi()
    responses = schema["paths"]["/stock-movements"]["post"]["responses"]
    assert {"400", "404", "409"} <= set(responses)
    assert "ErrorOut" in schema["components"]["schemas"]


def test_guarded_deletes_are_documented():
    paths = app.openapi()["paths"]
    for path in (
        "/categories/{category_id}",
        "/customers/{customer_id}",
        "/invoices/{invoice_id}",
        "/orders/{order_id}",
        "/products/{product_id}",
        "/suppliers/{supplier_id}",
        "/warehouses/{warehouse_id}",
    ):
        assert "409" in paths[path]["delete"]["responses"], path
