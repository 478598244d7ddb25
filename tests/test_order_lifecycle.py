from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from storefront.models.order import Order, OrderItem, OrderItemStatus, PaymentStatus, ReturnStatus
from storefront.models.wallet import Wallet
from storefront.services.order_lifecycle import can_transition, derive_order_status
from tests.helpers import (
    add_to_cart,
    auth_headers,
    create_address,
    create_admin,
    create_product,
    create_user,
    size_of,
)


def _place_order(client: TestClient, db: Session, user, products, payment_method="cod") -> dict:
    for product in products:
        add_to_cart(db, user, size_of(product))
    address = create_address(db, user)
    response = client.post(
        "/api/checkout/place-order",
        headers=auth_headers(user),
        json={"address_id": address.id, "payment_method": payment_method},
    )
    assert response.status_code == 201, response.json()
    return response.json()["data"]


def _set_status(client: TestClient, admin, order_id: int, item_id: int, new_status: str, **extra):
    return client.patch(
        f"/api/admin/orders/{order_id}/items/{item_id}/status",
        headers=auth_headers(admin),
        json={"status": new_status, **extra},
    )


def _deliver(client: TestClient, admin, order_id: int, item_id: int) -> None:
    for new_status in ("Processing", "Shipped", "Delivered"):
        assert _set_status(client, admin, order_id, item_id, new_status).status_code == 200


def _balance(db: Session, user) -> float:
    db.expire_all()
    return db.query(Wallet).filter(Wallet.user_id == user.id).one().balance


def test_transition_table():
    assert can_transition(OrderItemStatus.PENDING, OrderItemStatus.PROCESSING)
    assert can_transition(OrderItemStatus.PROCESSING, OrderItemStatus.CANCELLED)
    assert can_transition(OrderItemStatus.DELIVERED, OrderItemStatus.RETURNED)
    assert not can_transition(OrderItemStatus.PENDING, OrderItemStatus.SHIPPED)
    assert not can_transition(OrderItemStatus.SHIPPED, OrderItemStatus.CANCELLED)
    assert not can_transition(OrderItemStatus.CANCELLED, OrderItemStatus.PENDING)


def test_derived_order_status():
    order = Order(
        items=[
            OrderItem(status=OrderItemStatus.PROCESSING),
            OrderItem(status=OrderItemStatus.PENDING),
        ]
    )
    assert derive_order_status(order) == "pending"

    order.items[1].status = OrderItemStatus.CANCELLED
    assert derive_order_status(order) == "Processing"

    order.items[0].status = OrderItemStatus.CANCELLED
    assert derive_order_status(order) == "Cancelled"

    order.items[0].status = OrderItemStatus.RETURNED
    assert derive_order_status(order) == "Returned"


def test_cancel_requires_reason(client: TestClient, db_session: Session):
    user = create_user(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "   "},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Cancellation reason is required"


def test_cancel_cod_item_restocks(client: TestClient, db_session: Session, queued_tasks: list):
    user = create_user(db_session)
    product = create_product(db_session, stock=5)
    order = _place_order(client, db_session, user, [product])
    item_id = order["items"][0]["id"]

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Ordered by mistake"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["item"]["status"] == "Cancelled"
    assert data["item"]["cancel_reason"] == "Ordered by mistake"
    assert data["order_status"] == "Cancelled"
    assert data["payment_status"] == "pending"
    assert ("send_item_status_update", (item_id,)) in queued_tasks

    db_session.expire_all()
    assert size_of(product).stock_count == 5


def test_cancel_wallet_item_refunds_with_delivery(client: TestClient, db_session: Session):
    user = create_user(db_session, balance=1000.0)
    order = _place_order(
        client, db_session, user, [create_product(db_session, price=400.0)], payment_method="wallet"
    )
    assert order["total_amount"] == 450.0
    assert _balance(db_session, user) == 550.0

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{order['items'][0]['id']}",
        headers=auth_headers(user),
        json={"reason": "Found a better price"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == PaymentStatus.REFUNDED.value
    assert _balance(db_session, user) == 1000.0


def test_partial_cancel_of_wallet_order(client: TestClient, db_session: Session):
    user = create_user(db_session, balance=5000.0)
    products = [
        create_product(db_session, name="Shirt", price=1200.0),
        create_product(db_session, name="Cap", price=600.0),
    ]
    order = _place_order(client, db_session, user, products, payment_method="wallet")
    cap = order["items"][1]

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{cap['id']}",
        headers=auth_headers(user),
        json={"reason": "Not needed"},
    )

    data = response.json()["data"]
    assert data["payment_status"] == PaymentStatus.PARTIALLY_REFUNDED.value
    assert data["order_status"] == "pending"
    assert data["item"]["refunded_amount"] == 600.0
    assert _balance(db_session, user) == 5000.0 - 1800.0 + 600.0


def test_cannot_cancel_after_shipping(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]
    _set_status(client, admin, order["id"], item_id, "Processing")
    _set_status(client, admin, order["id"], item_id, "Shipped")

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Too slow"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Item cannot be cancelled once it is Shipped"


def test_cancel_someone_elses_order(client: TestClient, db_session: Session):
    user = create_user(db_session)
    stranger = create_user(db_session, username="stranger")
    order = _place_order(client, db_session, user, [create_product(db_session)])

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{order['items'][0]['id']}",
        headers=auth_headers(stranger),
        json={"reason": "Mischief"},
    )

    assert response.status_code == 404


def test_admin_status_transitions(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]

    response = _set_status(client, admin, order["id"], item_id, "Shipped")
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot change status from pending to Shipped"

    response = _set_status(client, admin, order["id"], item_id, "Processing", notes="Packed")
    assert response.status_code == 200
    assert response.json()["message"] == "Item status updated to Processing"

    response = _set_status(client, admin, order["id"], item_id, "Processing")
    assert response.status_code == 400
    assert response.json()["message"] == "Item is already Processing"

    response = _set_status(client, admin, order["id"], item_id, "Returned")
    assert response.status_code == 400


def test_delivery_marks_cod_order_paid(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]

    _deliver(client, admin, order["id"], item_id)

    detail = client.get(f"/api/checkout/order/{order['id']}", headers=auth_headers(user)).json()["data"]
    assert detail["status"] == "Delivered"
    assert detail["payment_status"] == "paid"
    assert detail["items"][0]["delivered_at"] is not None


def test_admin_cancel_uses_reason(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]

    response = _set_status(client, admin, order["id"], item_id, "Cancelled", reason="Out of stock at warehouse")

    assert response.status_code == 200
    assert response.json()["data"]["item"]["cancel_reason"] == "Out of stock at warehouse"


def test_item_history(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]
    _set_status(client, admin, order["id"], item_id, "Processing", notes="Packed")

    response = client.get(
        f"/api/checkout/order/{order['id']}/items/{item_id}/history",
        headers=auth_headers(user),
    )

    history = response.json()["data"]
    assert [(h["old_status"], h["new_status"]) for h in history] == [
        (None, "pending"),
        ("pending", "Processing"),
    ]
    assert history[1]["changer_name"] == "storeadmin"
    assert history[1]["notes"] == "Packed"


def test_return_only_for_delivered_items(client: TestClient, db_session: Session):
    user = create_user(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])

    response = client.patch(
        f"/api/checkout/return-product/{order['id']}/{order['items'][0]['id']}",
        headers=auth_headers(user),
        json={"reason": "Defective", "details": "Seam is torn"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Only delivered items can be returned"


def test_return_validation(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]
    _deliver(client, admin, order["id"], item_id)
    url = f"/api/checkout/return-product/{order['id']}/{item_id}"
    headers = auth_headers(user)

    response = client.patch(url, headers=headers, json={"details": "Seam is torn"})
    assert response.json()["message"] == "Return reason is required"

    response = client.patch(url, headers=headers, json={"reason": "Bored", "details": "Meh"})
    assert response.json()["message"] == "Invalid return reason"

    response = client.patch(url, headers=headers, json={"reason": "Defective"})
    assert response.json()["message"] == "Please provide details about the return"

    response = client.patch(url, headers=headers, json={"reason": "Defective", "details": "Seam is torn"})
    assert response.status_code == 200
    assert response.json()["data"]["item"]["return_status"] == "requested"

    response = client.patch(url, headers=headers, json={"reason": "Defective", "details": "Again"})
    assert response.json()["message"] == "Return already requested for this item"


def test_return_window_expires(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]
    _deliver(client, admin, order["id"], item_id)

    item = db_session.get(OrderItem, item_id)
    item.delivered_at = datetime.utcnow() - timedelta(days=8)
    db_session.commit()

    response = client.patch(
        f"/api/checkout/return-product/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Defective", "details": "Seam is torn"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Return window of 7 days has expired"


def test_approve_return_restocks_and_refunds(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    product = create_product(db_session, price=1200.0, stock=3)
    order = _place_order(client, db_session, user, [product])
    item_id = order["items"][0]["id"]
    _deliver(client, admin, order["id"], item_id)
    client.patch(
        f"/api/checkout/return-product/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Wrong size/fit", "details": "Runs small"},
    )

    pending = client.get("/api/admin/returns", headers=auth_headers(admin), params={"status": "requested"})
    assert [r["item"]["id"] for r in pending.json()["data"]] == [item_id]

    response = client.patch(
        f"/api/admin/orders/{order['id']}/items/{item_id}/return",
        headers=auth_headers(admin),
        json={"approve": True},
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Return approved and refunded"
    data = response.json()["data"]
    assert data["item"]["status"] == "Returned"
    assert data["item"]["return_status"] == "approved"
    assert data["payment_status"] == "refunded"
    assert data["order_status"] == "Returned"
    assert _balance(db_session, user) == 1200.0
    assert size_of(product).stock_count == 3

    response = client.patch(
        f"/api/admin/orders/{order['id']}/items/{item_id}/return",
        headers=auth_headers(admin),
        json={"approve": True},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "No pending return request for this item"


def test_reject_return(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    order = _place_order(client, db_session, user, [create_product(db_session)])
    item_id = order["items"][0]["id"]
    _deliver(client, admin, order["id"], item_id)
    client.patch(
        f"/api/checkout/return-product/{order['id']}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Changed my mind", "details": "Colour differs"},
    )

    response = client.patch(
        f"/api/admin/orders/{order['id']}/items/{item_id}/return",
        headers=auth_headers(admin),
        json={"approve": False, "notes": "Worn item"},
    )

    assert response.json()["message"] == "Return request rejected"
    data = response.json()["data"]
    assert data["item"]["status"] == "Delivered"
    assert data["item"]["return_status"] == "rejected"
    assert _balance(db_session, user) == 0.0

    db_session.expire_all()
    assert db_session.get(OrderItem, item_id).return_status == ReturnStatus.REJECTED


def _approve_return(client: TestClient, user, admin, order_id: int, item_id: int) -> dict:
    response = client.patch(
        f"/api/checkout/return-product/{order_id}/{item_id}",
        headers=auth_headers(user),
        json={"reason": "Defective", "details": "Button missing"},
    )
    assert response.status_code == 200
    response = client.patch(
        f"/api/admin/orders/{order_id}/items/{item_id}/return",
        headers=auth_headers(admin),
        json={"approve": True},
    )
    assert response.status_code == 200
    return response.json()["data"]


def test_cod_return_while_other_item_in_transit(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    products = [
        create_product(db_session, name="Shirt", price=1200.0),
        create_product(db_session, name="Cap", price=600.0),
    ]
    order = _place_order(client, db_session, user, products)
    shirt, cap = order["items"]

    _deliver(client, admin, order["id"], shirt["id"])
    _set_status(client, admin, order["id"], cap["id"], "Processing")

    data = _approve_return(client, user, admin, order["id"], shirt["id"])
    assert data["payment_status"] == "partially_refunded"
    assert _balance(db_session, user) == 1200.0

    _set_status(client, admin, order["id"], cap["id"], "Shipped")
    response = _set_status(client, admin, order["id"], cap["id"], "Delivered")

    data = response.json()["data"]
    assert data["payment_status"] == "partially_refunded"
    assert data["order_status"] == "Delivered"
    assert _balance(db_session, user) == 1200.0


def test_cod_order_paid_when_rest_is_cancelled(client: TestClient, db_session: Session):
    user = create_user(db_session)
    admin = create_admin(db_session)
    products = [
        create_product(db_session, name="Shirt", price=1200.0),
        create_product(db_session, name="Cap", price=600.0),
    ]
    order = _place_order(client, db_session, user, products)
    shirt, cap = order["items"]

    _deliver(client, admin, order["id"], shirt["id"])
    detail = client.get(f"/api/checkout/order/{order['id']}", headers=auth_headers(user)).json()["data"]
    assert detail["payment_status"] == "pending"

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{cap['id']}",
        headers=auth_headers(user),
        json={"reason": "Changed my mind"},
    )

    data = response.json()["data"]
    assert data["order_status"] == "Delivered"
    assert data["payment_status"] == "paid"
    assert _balance(db_session, user) == 0.0


def test_wallet_order_cancel_then_return(client: TestClient, db_session: Session):
    user = create_user(db_session, balance=5000.0)
    admin = create_admin(db_session)
    products = [
        create_product(db_session, name="Shirt", price=1200.0),
        create_product(db_session, name="Cap", price=600.0),
    ]
    order = _place_order(client, db_session, user, products, payment_method="wallet")
    shirt, cap = order["items"]
    assert _balance(db_session, user) == 3200.0

    response = client.patch(
        f"/api/checkout/cancel-order/{order['id']}/{cap['id']}",
        headers=auth_headers(user),
        json={"reason": "Not needed"},
    )
    assert response.json()["data"]["payment_status"] == "partially_refunded"
    assert _balance(db_session, user) == 3800.0

    _deliver(client, admin, order["id"], shirt["id"])
    detail = client.get(f"/api/checkout/order/{order['id']}", headers=auth_headers(user)).json()["data"]
    assert detail["payment_status"] == "partially_refunded"
    assert _balance(db_session, user) == 3800.0

    data = _approve_return(client, user, admin, order["id"], shirt["id"])
    assert data["payment_status"] == "refunded"
    assert data["order_status"] == "Returned"
    assert _balance(db_session, user) == 5000.0
