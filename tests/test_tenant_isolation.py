from conftest import create_product, create_warehouse, post_movement, register_company


def _two_companies(client):
    company_a = register_company(client, email="a@example.com", company_name="Alpha")
    company_b = register_company(client, email="b@example.com", company_name="Beta")
    return company_a, company_b


def test_other_company_rows_are_not_found(test_context):
    client, _ = test_context
    company_a, company_b = _two_companies(client)
    warehouse_a = create_warehouse(client, company_a)
    product_b = create_product(client, company_b)
    warehouse_b = create_warehouse(client, company_b)

    assert client.get(f"/products/{product_b}", headers=company_a).status_code == 404
    assert client.get(f"/warehouses/{warehouse_b}", headers=company_a).status_code == 404

    res = post_movement(client, company_a, warehouse_id=warehouse_a, product_id=product_b, movement_type="IN", quantity=1)
    assert res.status_code == 404, res.text
    assert res.json()["error"]["code"] == "not_found"

    res = client.get("/stock", params={"product_id": product_b}, headers=company_a)
    assert res.status_code == 404, res.text


def test_listings_are_scoped_to_company(test_context):
    client, _ = test_context
    company_a, company_b = _two_companies(client)
    warehouse_b = create_warehouse(client, company_b)
    product_b = create_product(client, company_b)
    res = post_movement(client, company_b, warehouse_id=warehouse_b, product_id=product_b, movement_type="IN", quantity=3)
    assert res.status_code == 201, res.text

    invoice = client.post("/invoices", json={"total_amount": 100}, headers=company_b)
    assert invoice.status_code == 201, invoice.text

    assert client.get("/products", headers=company_a).json()["pagination"]["total"] == 0
    assert client.get("/stock", headers=company_a).json()["items"] == []
    assert client.get("/stock-movements", headers=company_a).json()["pagination"]["total"] == 0
    assert client.get("/invoices", headers=company_a).json()["pagination"]["total"] == 0
    assert client.get(f"/invoices/{invoice.json()['id']}", headers=company_a).status_code == 404

    payment = client.post(
        "/payments",
        json={"invoice_id": invoice.json()["id"], "amount": 10, "payment_method": "CASH"},
        headers=company_a,
    )
    assert payment.status_code == 404, payment.text


def test_document_numbers_are_per_company(test_context):
    client, _ = test_context
    company_a, company_b = _two_companies(client)

    first_a = client.post("/invoices", json={"total_amount": 10}, headers=company_a).json()
    first_b = client.post("/invoices", json={"total_amount": 10}, headers=company_b).json()
    assert first_a["invoice_number"] == first_b["invoice_number"]
