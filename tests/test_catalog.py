from conftest import add_member, create_product, create_warehouse, post_movement, register_company


def _category(client, headers, name: str, parent_id: str | None = None) -> str:
    res = client.post("/categories", json={"name": name, "parent_id": parent_id}, headers=headers)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def test_customer_detail_update_and_delete(test_context):
    client, _ = test_context
    headers = register_company(client, email="partners@example.com")
    res = client.post("/customers", json={"name": "OOO Romashka"}, headers=headers)
    assert res.status_code == 201, res.text
    customer_id = res.json()["id"]

    res = client.patch(f"/customers/{customer_id}", json={"phone": "+7 900 111-22-33"}, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["phone"] == "+7 900 111-22-33"
    assert res.json()["name"] == "OOO Romashka"

    empty = client.patch(f"/customers/{customer_id}", json={}, headers=headers)
    assert empty.status_code == 422, empty.text

    fetched = client.get(f"/customers/{customer_id}", headers=headers)
    assert fetched.status_code == 200, fetched.text
    assert fetched.json()["phone"] == "+7 900 111-22-33"

    other = register_company(client, email="partners-other@example.com", company_name="Other Co")
    assert client.get(f"/customers/{customer_id}", headers=other).status_code == 404
    assert client.delete(f"/customers/{customer_id}", headers=other).status_code == 404

    res = client.delete(f"/customers/{customer_id}", headers=headers)
    assert res.status_code == 204, res.text
    assert client.get(f"/customers/{customer_id}", headers=headers).status_code == 404


def test_partners_with_orders_cannot_be_deleted(test_context):
    client, _ = test_context
    headers = register_company(client, email="partner-orders@example.com")
    product_id = create_product(client, headers)
    supplier = client.post("/suppliers", json={"name": "Metiz Supply"}, headers=headers)
    assert supplier.status_code == 201, supplier.text
    supplier_id = supplier.json()["id"]

    order = client.post(
        "/orders",
        json={"supplier_id": supplier_id, "items": [{"product_id": product_id, "quantity": 5, "price": 40}]},
        headers=headers,
    )
    assert order.status_code == 201, order.text

    res = client.delete(f"/suppliers/{supplier_id}", headers=headers)
    assert res.status_code == 409, res.text
    assert client.get(f"/suppliers/{supplier_id}", headers=headers).status_code == 200


def test_products_and_warehouses_with_movements_cannot_be_deleted(test_context):
    client, _ = test_context
    headers = register_company(client, email="catalog-delete@example.com")
    warehouse_id = create_warehouse(client, headers)
    stocked_id = create_product(client, headers, "Steel bolt M8")
    unused_id = create_product(client, headers, "Steel nut M8")
    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=stocked_id, movement_type="IN", quantity=3)
    assert res.status_code == 201, res.text

    assert client.delete(f"/products/{stocked_id}", headers=headers).status_code == 409
    assert client.delete(f"/warehouses/{warehouse_id}", headers=headers).status_code == 409

    res = client.delete(f"/products/{unused_id}", headers=headers)
    assert res.status_code == 204, res.text
    assert client.get(f"/products/{unused_id}", headers=headers).status_code == 404

    empty_id = create_warehouse(client, headers, "Overflow")
    res = client.delete(f"/warehouses/{empty_id}", headers=headers)
    assert res.status_code == 204, res.text
    assert client.get(f"/warehouses/{empty_id}", headers=headers).status_code == 404


def test_category_tree_rules(test_context):
    client, _ = test_context
    headers = register_company(client, email="categories@example.com")
    root_id = _category(client, headers, "Hardware")
    child_id = _category(client, headers, "Fasteners", parent_id=root_id)
    leaf_id = _category(client, headers, "Bolts", parent_id=child_id)

    res = client.patch(f"/categories/{root_id}", json={"parent_id": leaf_id}, headers=headers)
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "parent_id"

    res = client.patch(f"/categories/{root_id}", json={"parent_id": root_id}, headers=headers)
    assert res.status_code == 400, res.text

    res = client.post("/categories", json={"name": "Orphan", "parent_id": "missing"}, headers=headers)
    assert res.status_code == 404, res.text

    roots = client.get("/categories", params={"roots_only": True}, headers=headers)
    assert roots.status_code == 200, roots.text
    assert [item["id"] for item in roots.json()["items"]] == [root_id]

    children = client.get("/categories", params={"parent_id": root_id}, headers=headers)
    assert [item["id"] for item in children.json()["items"]] == [child_id]

    assert client.delete(f"/categories/{child_id}", headers=headers).status_code == 409

    product_id = create_product(client, headers, "Steel bolt M8", category_id=leaf_id)
    create_product(client, headers, "Drill")
    listed = client.get("/products", params={"category_id": leaf_id}, headers=headers)
    assert listed.status_code == 200, listed.text
    assert [item["id"] for item in listed.json()["items"]] == [product_id]
    assert listed.json()["items"][0]["category_id"] == leaf_id

    assert client.delete(f"/categories/{leaf_id}", headers=headers).status_code == 409

    res = client.patch(f"/products/{product_id}", json={"category_id": None}, headers=headers)
    assert res.status_code == 200, res.text
    assert res.json()["category_id"] is None
    assert client.delete(f"/categories/{leaf_id}", headers=headers).status_code == 204

    res = client.post("/products", json={"name": "Washer", "category_id": "missing"}, headers=headers)
    assert res.status_code == 404, res.text


def test_category_permissions_follow_role(test_context):
    client, _ = test_context
    admin = register_company(client, email="category-roles@example.com")
    manager = add_member(client, admin, email="category-manager@example.com", role="manager")
    storekeeper = add_member(client, admin, email="category-storekeeper@example.com", role="warehouse")

    category_id = _category(client, manager, "Hardware")

    res = client.post("/categories", json={"name": "Tools"}, headers=storekeeper)
    assert res.status_code == 403, res.text
    res = client.get(f"/categories/{category_id}", headers=storekeeper)
    assert res.status_code == 200, res.text
    assert res.json()["name"] == "Hardware"
