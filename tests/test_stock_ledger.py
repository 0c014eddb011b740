from decimal import Decimal
from itertools import permutations
from types import SimpleNamespace

from sqlalchemy import func, select

from conftest import create_product, create_warehouse, post_movement, register_company, stock_level
from erpledger.core.config import settings
from erpledger.models.stock import StockLevel, StockMovement
from erpledger.services.stock_ledger import LevelTotals, aggregate_movements, movement_effect


def _movement_count(session_local) -> int:
    with session_local() as db:
        return int(db.execute(select(func.count(StockMovement.id))).scalar_one())


def test_movement_effect_signs():
    assert movement_effect("IN", 5) == (Decimal("5"), Decimal("0"))
    assert movement_effect("OUT", 5) == (Decimal("-5"), Decimal("0"))
    assert movement_effect("ADJUSTMENT", "-2") == (Decimal("-2"), Decimal("0"))
    assert movement_effect("RESERVED", 3) == (Decimal("0"), Decimal("3"))
    assert movement_effect("UNRESERVED", 3) == (Decimal("0"), Decimal("-3"))
    assert movement_effect("TRANSFER", 4) == (Decimal("0"), Decimal("0"))


def test_aggregate_movements_ignores_order():
    movements = [
        SimpleNamespace(warehouse_id="w1", product_id="p1", movement_type="IN", quantity=Decimal("10")),
        SimpleNamespace(warehouse_id="w1", product_id="p1", movement_type="OUT", quantity=Decimal("3")),
        SimpleNamespace(warehouse_id="w1", product_id="p1", movement_type="RESERVED", quantity=Decimal("2")),
        SimpleNamespace(warehouse_id="w2", product_id="p1", movement_type="ADJUSTMENT", quantity=Decimal("-1.5")),
    ]
    expected = {
        ("w1", "p1"): LevelTotals(quantity=Decimal("7.000"), reserved=Decimal("2.000")),
        ("w2", "p1"): LevelTotals(quantity=Decimal("-1.500"), reserved=Decimal("0.000")),
    }
    for ordering in permutations(movements):
        assert aggregate_movements(ordering) == expected
    assert expected[("w1", "p1")].available == Decimal("5.000")


def test_levels_follow_movement_log(test_context):
    client, _ = test_context
    headers = register_company(client, email="stock@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers, sku="BOLT-M8")

    for movement_type, quantity in (("IN", 10), ("OUT", 3), ("RESERVED", 2)):
        res = post_movement(
            client,
            headers,
            warehouse_id=warehouse_id,
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
        )
        assert res.status_code == 201, res.text

    level = stock_level(client, headers, warehouse_id=warehouse_id, product_id=product_id)
    assert level["quantity"] == 7
    assert level["reserved"] == 2
    assert level["available"] == 5

    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="UNRESERVED", quantity=1
    )
    assert res.status_code == 201, res.text

    level = stock_level(client, headers, warehouse_id=warehouse_id, product_id=product_id)
    assert level["quantity"] == 7
    assert level["reserved"] == 1
    assert level["available"] == 6

    listed = client.get("/stock-movements", params={"product_id": product_id}, headers=headers)
    assert listed.status_code == 200, listed.text
    assert listed.json()["pagination"]["total"] == 4
    assert {item["movement_type"] for item in listed.json()["items"]} == {"IN", "OUT", "RESERVED", "UNRESERVED"}


def test_non_positive_quantity_is_rejected_without_writing(test_context):
    client, session_local = test_context
    headers = register_company(client, email="qty@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    for quantity in (0, -5):
        res = post_movement(
            client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=quantity
        )
        assert res.status_code == 400, res.text
        assert res.json()["error"]["code"] == "validation_error"

    zero_adjustment = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="ADJUSTMENT", quantity=0
    )
    assert zero_adjustment.status_code == 400, zero_adjustment.text
    assert _movement_count(session_local) == 0


def test_oversell_is_rejected_and_log_is_unchanged(test_context):
    client, session_local = test_context
    headers = register_company(client, email="oversell@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=5)
    assert res.status_code == 201, res.text

    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="OUT", quantity=6)
    assert res.status_code == 409, res.text
    assert res.json()["error"]["code"] == "conflict"

    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="UNRESERVED", quantity=1
    )
    assert res.status_code == 409, res.text

    assert _movement_count(session_local) == 1
    level = stock_level(client, headers, warehouse_id=warehouse_id, product_id=product_id)
    assert level["quantity"] == 5
    assert level["available"] == 5


def test_reservation_cannot_exceed_available(test_context):
    client, _ = test_context
    headers = register_company(client, email="reserve@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=4)
    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="RESERVED", quantity=3
    )
    assert res.status_code == 201, res.text

    # Only 1 unit is free; shipping 2 would eat into the reservation.
    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="OUT", quantity=2)
    assert res.status_code == 409, res.text
    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="RESERVED", quantity=2
    )
    assert res.status_code == 409, res.text


def test_negative_stock_allowed_when_configured(test_context):
    client, _ = test_context
    headers = register_company(client, email="negative@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    settings.stock_allow_negative = True
    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="OUT", quantity=2)
    assert res.status_code == 201, res.text

    level = stock_level(client, headers, warehouse_id=warehouse_id, product_id=product_id)
    assert level["quantity"] == -2
    assert level["available"] == -2


def test_transfer_type_is_not_accepted_directly(test_context):
    client, _ = test_context
    headers = register_company(client, email="transfer-type@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="TRANSFER", quantity=1
    )
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "movement_type"


def test_service_products_carry_no_stock(test_context):
    client, _ = test_context
    headers = register_company(client, email="service@example.com")
    warehouse_id = create_warehouse(client, headers)
    service_id = create_product(client, headers, name="Installation", is_service=True)

    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=service_id, movement_type="IN", quantity=1)
    assert res.status_code == 400, res.text


def test_transfer_moves_stock_between_warehouses(test_context):
    client, _ = test_context
    headers = register_company(client, email="transfer@example.com")
    source_id = create_warehouse(client, headers, "Central")
    target_id = create_warehouse(client, headers, "Store")
    product_id = create_product(client, headers)

    post_movement(client, headers, warehouse_id=source_id, product_id=product_id, movement_type="IN", quantity=10)
    res = client.post(
        "/stock-transfers",
        json={
            "from_warehouse_id": source_id,
            "to_warehouse_id": target_id,
            "product_id": product_id,
            "quantity": 4,
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["out_movement"]["movement_type"] == "OUT"
    assert body["in_movement"]["movement_type"] == "IN"
    assert body["out_movement"]["reference_type"] == "TRANSFER"
    assert body["out_movement"]["reference_id"] == body["in_movement"]["reference_id"] == body["reference_id"]

    assert stock_level(client, headers, warehouse_id=source_id, product_id=product_id)["quantity"] == 6
    assert stock_level(client, headers, warehouse_id=target_id, product_id=product_id)["quantity"] == 4

    too_much = client.post(
        "/stock-transfers",
        json={
            "from_warehouse_id": source_id,
            "to_warehouse_id": target_id,
            "product_id": product_id,
            "quantity": 7,
        },
        headers=headers,
    )
    assert too_much.status_code == 409, too_much.text
    assert stock_level(client, headers, warehouse_id=target_id, product_id=product_id)["quantity"] == 4

    same = client.post(
        "/stock-transfers",
        json={
            "from_warehouse_id": source_id,
            "to_warehouse_id": source_id,
            "product_id": product_id,
            "quantity": 1,
        },
        headers=headers,
    )
    assert same.status_code == 400, same.text


def test_recalculate_repairs_cached_levels(test_context):
    client, session_local = test_context
    headers = register_company(client, email="recalc@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=10)
    post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="RESERVED", quantity=2)

    with session_local() as db:
        level = db.execute(select(StockLevel)).scalar_one()
        assert level.quantity == Decimal("10")
        assert level.available == Decimal("8")
        level.quantity = Decimal("999")
        level.available = Decimal("997")
        db.commit()

    res = client.post("/stock/recalculate", headers=headers)
    assert res.status_code == 200, res.text
    assert res.json() == {"recalculated_count": 1, "corrected_count": 1}

    with session_local() as db:
        level = db.execute(select(StockLevel)).scalar_one()
        assert level.quantity == Decimal("10")
        assert level.reserved == Decimal("2")
        assert level.available == Decimal("8")

    again = client.post("/stock/recalculate", headers=headers)
    assert again.status_code == 200, again.text
    assert again.json() == {"recalculated_count": 1, "corrected_count": 0}


def test_stock_movements_are_audited(test_context):
    client, _ = test_context
    headers = register_company(client, email="audit-stock@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=3)
    assert res.status_code == 201, res.text
    movement_id = res.json()["id"]

    logs = client.get(
        "/audit-logs",
        params={"entity_type": "stock_movement", "entity_id": movement_id},
        headers=headers,
    )
    assert logs.status_code == 200, logs.text
    items = logs.json()["items"]
    assert len(items) == 1
    assert items[0]["action"] == "CREATE"
    assert items[0]["new_values"]["movement_type"] == "IN"
    assert items[0]["user_agent"] == "testclient"


def test_out_of_range_quantity_is_rejected_without_writing(test_context):
    client, session_local = test_context
    headers = register_company(client, email="huge-quantity@example.com")
    warehouse_id = create_warehouse(client, headers)
    product_id = create_product(client, headers)

    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity="1e26")
    assert res.status_code == 400, res.text
    assert res.json()["error"]["details"][0]["field"] == "quantity"
    assert _movement_count(session_local) == 0

    res = post_movement(
        client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity="99999999999.999"
    )
    assert res.status_code == 201, res.text
    res = post_movement(client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type="IN", quantity=1)
    assert res.status_code == 400, res.text
    assert _movement_count(session_local) == 1


def test_recalculate_is_a_no_op_on_consistent_levels(test_context):
    client, session_local = test_context
    headers = register_company(client, email="recalc-many@example.com")
    central_id = create_warehouse(client, headers, "Central")
    store_id = create_warehouse(client, headers, "Store")
    bolt_id = create_product(client, headers, "Steel bolt M8")
    nut_id = create_product(client, headers, "Steel nut M8")

    for warehouse_id, product_id, movement_type, quantity in (
        (central_id, bolt_id, "IN", 10),
        (central_id, bolt_id, "OUT", "2.5"),
        (central_id, nut_id, "IN", 7),
        (central_id, nut_id, "RESERVED", 3),
        (store_id, nut_id, "IN", 1),
        (store_id, nut_id, "ADJUSTMENT", "-0.25"),
    ):
        res = post_movement(
            client, headers, warehouse_id=warehouse_id, product_id=product_id, movement_type=movement_type, quantity=quantity
        )
        assert res.status_code == 201, res.text
    res = client.post(
        "/stock-transfers",
        json={"from_warehouse_id": central_id, "to_warehouse_id": store_id, "product_id": bolt_id, "quantity": 4},
        headers=headers,
    )
    assert res.status_code == 201, res.text

    def levels():
        res = client.get("/stock", headers=headers)
        assert res.status_code == 200, res.text
        return sorted(res.json()["items"], key=lambda item: (item["warehouse_id"], item["product_id"]))

    before = levels()
    assert len(before) == 4

    for _ in range(2):
        res = client.post("/stock/recalculate", headers=headers)
        assert res.status_code == 200, res.text
        assert res.json() == {"recalculated_count": 4, "corrected_count": 0}
        assert levels() == before

    with session_local() as db:
        cached = {
            (row.warehouse_id, row.product_id): (row.quantity, row.reserved, row.available)
            for row in db.execute(select(StockLevel)).scalars()
        }
    for item in before:
        quantity, reserved, available = cached[(item["warehouse_id"], item["product_id"])]
        assert float(quantity) == item["quantity"]
        assert float(reserved) == item["reserved"]
        assert float(available) == item["available"]
