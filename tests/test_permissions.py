import re
from pathlib import Path

from conftest import add_member, create_product, create_warehouse, post_movement, register_company
from erpledger.core.config import settings
from erpledger.core.permissions import DEFAULT_PERMISSION_MATRIX, has_permission, role_permissions


def test_default_permission_matrix():
    assert has_permission(role="admin", permission="stock.recalculate")
    assert has_permission(role="warehouse", permission="stock_movements.create")
    assert not has_permission(role="warehouse", permission="invoices.create")
    assert has_permission(role="accountant", permission="payments.create")
    assert not has_permission(role="accountant", permission="stock_movements.create")
    assert not has_permission(role="manager", permission="audit.read")
    assert role_permissions("unknown") == set()


def test_role_permission_override(test_context):
    settings.role_permissions = {"warehouse": ["stock.read"]}
    assert role_permissions("warehouse") == {"stock.read"}
    assert not has_permission(role="warehouse", permission="stock_movements.create")


def test_warehouse_role_cannot_touch_billing(test_context):
    client, _ = test_context
    admin = register_company(client, email="owner@example.com")
    storekeeper = add_member(client, admin, email="storekeeper@example.com", role="warehouse")
    warehouse_id = create_warehouse(client, admin)
    product_id = create_product(client, admin)

    res = client.post("/invoices", json={"total_amount": 100}, headers=storekeeper)
    assert res.status_code == 403, res.text
    assert res.json()["error"]["code"] == "forbidden"

    res = post_movement(
        client, storekeeper, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=5
    )
    assert res.status_code == 201, res.text

    res = client.post("/stock/recalculate", headers=storekeeper)
    assert res.status_code == 403, res.text


def test_accountant_cannot_move_stock(test_context):
    client, _ = test_context
    admin = register_company(client, email="owner2@example.com")
    accountant = add_member(client, admin, email="accountant@example.com", role="accountant")
    warehouse_id = create_warehouse(client, admin)
    product_id = create_product(client, admin)

    res = post_movement(
        client, accountant, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=5
    )
    assert res.status_code == 403, res.text

    res = client.post("/invoices", json={"total_amount": 100}, headers=accountant)
    assert res.status_code == 201, res.text

    res = client.get("/audit-logs", headers=accountant)
    assert res.status_code == 403, res.text


def test_override_applies_to_requests(test_context):
    client, _ = test_context
    admin = register_company(client, email="owner3@example.com")
    storekeeper = add_member(client, admin, email="keeper3@example.com", role="warehouse")
    warehouse_id = create_warehouse(client, admin)
    product_id = create_product(client, admin)

    settings.role_permissions = {"warehouse": ["stock.read"]}
    res = post_movement(
        client, storekeeper, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=1
    )
    assert res.status_code == 403, res.text

    res = client.get("/stock", headers=storekeeper)
    assert res.status_code == 200, res.text


def test_requests_require_authentication(test_context):
    client, _ = test_context
    res = client.get("/stock")
    assert res.status_code == 401, res.text
    assert res.json()["error"]["code"] == "unauthorized"


def test_mutations_write_audit_entries(test_context):
    client, _ = test_context
    admin = register_company(client, email="auditor@example.com")
    product_id = create_product(client, admin, sku="AUD-1")

    res = client.patch(f"/products/{product_id}", json={"name": "Renamed bolt"}, headers=admin)
    assert res.status_code == 200, res.text

    logs = client.get("/audit-logs", params={"entity_type": "product", "entity_id": product_id}, headers=admin)
    assert logs.status_code == 200, logs.text
    actions = sorted(item["action"] for item in logs.json()["items"])
    assert actions == ["CREATE", "UPDATE"]
    update = next(item for item in logs.json()["items"] if item["action"] == "UPDATE")
    assert update["old_values"]["name"] == "Steel bolt M8"
    assert update["new_values"]["name"] == "Renamed bolt"


def test_every_granted_permission_guards_a_route():
    routers_dir = Path(__file__).resolve().parents[1] / "erpledger" / "routers"
    required = set()
    for path in routers_dir.glob("*.py"):
        required |= set(re.findall(r'require_permission\("([a-z_.]+)"\)', path.read_text(encoding="utf-8")))

    granted = set().union(*DEFAULT_PERMISSION_MATRIX.values()) - {"*"}
    assert granted - required == set()
    assert has_permission(role="manager", permission="orders.delete")
    assert not has_permission(role="warehouse", permission="categories.create")
