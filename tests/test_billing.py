from decimal import Decimal
from types import SimpleNamespace

from conftest import register_company
from erpledger.services.billing import (
    compute_order_total,
    derive_invoice_status,
    get_invoice_balance,
    invoice_tax_amount,
    line_total,
)


def _create_invoice(client, headers, total_amount=1000, **extra) -> dict:
    res = client.post(
        "/invoices",
        json={"total_amount": total_amount, "status": "ISSUED", **extra},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    return res.json()


def _pay(client, headers, invoice_id: str, amount, **extra):
    return client.post(
        "/payments",
        json={"invoice_id": invoice_id, "amount": amount, "payment_method": "BANK_TRANSFER", **extra},
        headers=headers,
    )


def _get_invoice(client, headers, invoice_id: str) -> dict:
    res = client.get(f"/invoices/{invoice_id}", headers=headers)
    assert res.status_code == 200, res.text
    return res.json()


def test_order_total_is_sum_of_line_totals():
    items = [(2, Decimal("100"), Decimal("20")), (1, Decimal("50"), Decimal("10"))]
    assert compute_order_total(items) == Decimal("295.00")
    assert line_total(2, 100, 20) == Decimal("240.00")
    # Each line rounds half up to 0.02 on its own.
    halves = [(1, Decimal("0.01"), Decimal("50"))] * 2
    assert line_total(1, Decimal("0.01"), Decimal("50")) == Decimal("0.02")
    assert compute_order_total(halves) == Decimal("0.04")
    assert compute_order_total([]) == Decimal("0.00")


def test_tax_amount_is_contained_in_total():
    assert invoice_tax_amount(Decimal("1200"), Decimal("20")) == Decimal("200.00")
    assert invoice_tax_amount(Decimal("1000"), Decimal("0")) == Decimal("0.00")


def test_derive_invoice_status():
    def invoice(status, total, paid):
        return SimpleNamespace(status=status, total_amount=Decimal(total), paid_amount=Decimal(paid))

    assert derive_invoice_status(invoice("ISSUED", "1000", "0")) == "ISSUED"
    assert derive_invoice_status(invoice("ISSUED", "1000", "300")) == "PARTIALLY_PAID"
    assert derive_invoice_status(invoice("PARTIALLY_PAID", "1000", "1000")) == "PAID"
    assert derive_invoice_status(invoice("PAID", "1000", "0")) == "ISSUED"
    assert derive_invoice_status(invoice("OVERDUE", "1000", "0")) == "OVERDUE"
    assert derive_invoice_status(invoice("CANCELLED", "1000", "0")) == "CANCELLED"

    balance = get_invoice_balance(invoice("PAID", "1000", "1200"))
    assert balance["outstanding"] == Decimal("0.00")


def test_partial_payments_update_invoice(test_context):
    client, _ = test_context
    headers = register_company(client, email="billing@example.com")
    invoice = _create_invoice(client, headers)
    assert invoice["invoice_number"].startswith("INV-")
    assert invoice["status"] == "ISSUED"
    assert invoice["issued_date"] is not None
    assert invoice["tax_amount"] == 166.67

    for amount in (300, 400):
        res = _pay(client, headers, invoice["id"], amount)
        assert res.status_code == 201, res.text
        assert res.json()["currency"] == invoice["currency"]

    current = _get_invoice(client, headers, invoice["id"])
    assert current["paid_amount"] == 700
    assert current["outstanding_amount"] == 300
    assert current["status"] == "PARTIALLY_PAID"

    balance = client.get(f"/invoices/{invoice['id']}/balance", headers=headers)
    assert balance.status_code == 200, balance.text
    assert balance.json()["outstanding"] == 300
    assert balance.json()["status"] == "PARTIALLY_PAID"

    listed = client.get("/payments", params={"invoice_id": invoice["id"]}, headers=headers)
    assert listed.status_code == 200, listed.text
    assert listed.json()["pagination"]["total"] == 2


def test_overpayment_is_rejected(test_context):
    client, _ = test_context
    headers = register_company(client, email="overpay@example.com")
    invoice = _create_invoice(client, headers)

    assert _pay(client, headers, invoice["id"], 700).status_code == 201

    res = _pay(client, headers, invoice["id"], 300.01)
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "amount"

    res = _pay(client, headers, invoice["id"], 300)
    assert res.status_code == 201, res.text
    assert _get_invoice(client, headers, invoice["id"])["status"] == "PAID"


def test_invalid_payment_amounts(test_context):
    client, _ = test_context
    headers = register_company(client, email="amounts@example.com")
    invoice = _create_invoice(client, headers)

    for amount in (0, -10, 10.005):
        res = _pay(client, headers, invoice["id"], amount)
        assert res.status_code == 400, res.text

    res = _pay(client, headers, invoice["id"], 10, currency="USD")
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "currency"

    assert _get_invoice(client, headers, invoice["id"])["paid_amount"] == 0


def test_payment_changes_recompute_invoice(test_context):
    client, _ = test_context
    headers = register_company(client, email="recompute@example.com")
    invoice = _create_invoice(client, headers)

    first = _pay(client, headers, invoice["id"], 300).json()
    second = _pay(client, headers, invoice["id"], 400).json()

    res = client.delete(f"/payments/{second['id']}", headers=headers)
    assert res.status_code == 204, res.text
    current = _get_invoice(client, headers, invoice["id"])
    assert current["paid_amount"] == 300
    assert current["status"] == "PARTIALLY_PAID"

    res = client.patch(f"/payments/{first['id']}", json={"amount": 1000}, headers=headers)
    assert res.status_code == 200, res.text
    current = _get_invoice(client, headers, invoice["id"])
    assert current["paid_amount"] == 1000
    assert current["outstanding_amount"] == 0
    assert current["status"] == "PAID"

    res = client.patch(f"/payments/{first['id']}", json={"amount": 1000.5}, headers=headers)
    assert res.status_code == 400, res.text

    res = client.delete(f"/payments/{first['id']}", headers=headers)
    assert res.status_code == 204, res.text
    current = _get_invoice(client, headers, invoice["id"])
    assert current["paid_amount"] == 0
    assert current["status"] == "ISSUED"


def test_manual_invoice_status_rules(test_context):
    client, _ = test_context
    headers = register_company(client, email="status@example.com")
    invoice = _create_invoice(client, headers)

    res = client.patch(f"/invoices/{invoice['id']}", json={"status": "PAID"}, headers=headers)
    assert res.status_code == 400, res.text

    assert _pay(client, headers, invoice["id"], 100).status_code == 201

    res = client.patch(f"/invoices/{invoice['id']}", json={"status": "CANCELLED"}, headers=headers)
    assert res.status_code == 409, res.text

    res = client.patch(f"/invoices/{invoice['id']}", json={"status": "OVERDUE"}, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["status"] == "OVERDUE"

    other = _create_invoice(client, headers, total_amount=50)
    res = client.patch(f"/invoices/{other['id']}", json={"status": "CANCELLED"}, headers=headers)
    assert res.status_code == 200, res.text

    res = _pay(client, headers, other["id"], 10)
    assert res.status_code == 409, res.text
    res = client.patch(f"/invoices/{other['id']}", json={"status": "ISSUED"}, headers=headers)
    assert res.status_code == 409, res.text


def test_invoice_numbers_are_sequential(test_context):
    client, _ = test_context
    headers = register_company(client, email="numbers@example.com")
    first = _create_invoice(client, headers, total_amount=10)
    second = _create_invoice(client, headers, total_amount=20)

    assert first["invoice_number"][-6:] == "000001"
    assert second["invoice_number"][-6:] == "000002"
    assert first["invoice_number"][:9] == second["invoice_number"][:9]


def test_standalone_invoice_requires_amount(test_context):
    client, _ = test_context
    headers = register_company(client, email="no-amount@example.com")

    res = client.post("/invoices", json={"status": "DRAFT"}, headers=headers)
    assert res.status_code == 400, res.text
    res = client.post("/invoices", json={"order_id": "missing", "total_amount": 10}, headers=headers)
    assert res.status_code == 400, res.text


def test_out_of_range_amounts_are_rejected(test_context):
    client, _ = test_context
    headers = register_company(client, email="huge-amounts@example.com")
    invoice = _create_invoice(client, headers)

    for amount in ("1e27", "10000000000"):
        res = _pay(client, headers, invoice["id"], amount)
        assert res.status_code == 400, res.text
        assert res.json()["error"]["details"][0]["field"] == "amount"

    res = client.post(
        "/payments",
        json={"amount": "1e27", "payment_method": "CASH"},
        headers=headers,
    )
    assert res.status_code == 400, res.text

    res = client.post("/invoices", json={"total_amount": "1e27"}, headers=headers)
    assert res.status_code == 422, res.text
    assert _get_invoice(client, headers, invoice["id"])["paid_amount"] == 0


def test_invoice_with_payments_cannot_be_deleted(test_context):
    client, _ = test_context
    headers = register_company(client, email="invoice-delete@example.com")
    paid = _create_invoice(client, headers)
    assert _pay(client, headers, paid["id"], 100).status_code == 201

    res = client.delete(f"/invoices/{paid['id']}", headers=headers)
    assert res.status_code == 409, res.text
    assert _get_invoice(client, headers, paid["id"])["paid_amount"] == 100

    unpaid = _create_invoice(client, headers, total_amount=50)
    res = client.delete(f"/invoices/{unpaid['id']}", headers=headers)
    assert res.status_code == 204, res.text
    assert client.get(f"/invoices/{unpaid['id']}", headers=headers).status_code == 404

    logs = client.get(
        "/audit-logs",
        params={"entity_type": "invoice", "entity_id": unpaid["id"], "action": "DELETE"},
        headers=headers,
    )
    assert logs.status_code == 200, logs.text
    assert Decimal(logs.json()["items"][0]["old_values"]["total_amount"]) == Decimal("50")
