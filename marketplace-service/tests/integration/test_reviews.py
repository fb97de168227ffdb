"""
Integration tests for review submission, editing and the rating aggregates
kept on restaurants and delivery partners.
"""

from decimal import Decimal

import pytest

from marketplace.models import DeliveryPartner, Order, Restaurant, Review


def _ratings(session, seed):
    restaurant = session.get(Restaurant, seed.restaurant_id, populate_existing=True)
    partner = session.get(DeliveryPartner, seed.partner_id, populate_existing=True)
    return (restaurant.rating, restaurant.total_ratings), (partner.rating, partner.total_ratings)


def _submit(client, headers, order_id, restaurant_rating=4, delivery_rating=5, **extra):
    body = {"order_id": order_id, "restaurant_rating": restaurant_rating, **extra}
    if delivery_rating is not None:
        body["delivery_rating"] = delivery_rating
    return client.post("/reviews", json=body, headers=headers)


@pytest.fixture()
def delivered_order(make_order, seed):
    return make_order(status="delivered", partner_id=seed.partner_id)


@pytest.mark.integration
def test_only_delivered_orders_can_be_reviewed(client, seed, customer_headers, make_order, session):
    """A preparing order is turned away; once delivered the same order is accepted"""
    order_id = make_order(status="preparing", partner_id=seed.partner_id)
    resp = _submit(client, customer_headers, order_id)
    assert resp.status_code == 400
    assert resp.json()["message"] == "You can only review delivered orders"
    assert session.query(Review).count() == 0

    order = session.get(Order, order_id)
    order.status = "delivered"
    session.commit()

    resp = _submit(client, customer_headers, order_id)
    assert resp.status_code == 201
    assert resp.json()["data"]["restaurant_rating"] == 4


@pytest.mark.integration
def test_review_updates_both_aggregates(client, seed, customer_headers, delivered_order, session):
    resp = _submit(client, customer_headers, delivered_order, restaurant_rating=4, delivery_rating=5,
                   restaurant_review="Great biryani")
    assert resp.status_code == 201
    restaurant, partner = _ratings(session, seed)
    assert restaurant == (Decimal("4.0"), 1)
    assert partner == (Decimal("5.0"), 1)


@pytest.mark.integration
def test_review_without_delivery_rating_leaves_partner_alone(client, seed, customer_headers,
                                                              delivered_order, session):
    _submit(client, customer_headers, delivered_order, restaurant_rating=3, delivery_rating=None)
    restaurant, partner = _ratings(session, seed)
    assert restaurant == (Decimal("3.0"), 1)
    assert partner == (Decimal("0"), 0)


@pytest.mark.integration
def test_second_review_for_same_order_rejected(client, seed, customer_headers, delivered_order, session):
    assert _submit(client, customer_headers, delivered_order).status_code == 201
    resp = _submit(client, customer_headers, delivered_order, restaurant_rating=1)
    assert resp.status_code == 400
    assert resp.json()["message"] == "You have already reviewed this order"
    restaurant, _ = _ratings(session, seed)
    assert restaurant == (Decimal("4.0"), 1)


@pytest.mark.integration
def test_cannot_review_someone_elses_order(client, seed, customer_headers, make_order):
    order_id = make_order(status="delivered", partner_id=seed.partner_id, customer_id=seed.other_customer_id)
    assert _submit(client, customer_headers, order_id).status_code == 404


@pytest.mark.integration
def test_rating_out_of_range_rejected(client, customer_headers, delivered_order):
    resp = _submit(client, customer_headers, delivered_order, restaurant_rating=6)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_FAILED"


@pytest.mark.integration
def test_average_across_reviews(client, seed, customer_headers, make_order, session):
    for restaurant_rating in (5, 4, 4):
        order_id = make_order(status="delivered", partner_id=seed.partner_id)
        _submit(client, customer_headers, order_id, restaurant_rating=restaurant_rating, delivery_rating=None)
    restaurant, _ = _ratings(session, seed)
    assert restaurant == (Decimal("4.3"), 3)


@pytest.mark.integration
def test_update_review_recomputes(client, seed, customer_headers, delivered_order, session):
    review_id = _submit(client, customer_headers, delivered_order).json()["data"]["id"]
    resp = client.put(f"/reviews/{review_id}", json={"restaurant_rating": 2}, headers=customer_headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["restaurant_rating"] == 2
    assert data["delivery_rating"] == 5

    restaurant, partner = _ratings(session, seed)
    assert restaurant == (Decimal("2.0"), 1)
    assert partner == (Decimal("5.0"), 1)


@pytest.mark.integration
def test_update_text_only_keeps_ratings(client, seed, customer_headers, delivered_order, session):
    review_id = _submit(client, customer_headers, delivered_order).json()["data"]["id"]
    resp = client.put(f"/reviews/{review_id}", json={"restaurant_review": "Still great"},
                      headers=customer_headers)
    assert resp.json()["data"]["restaurant_review"] == "Still great"
    restaurant, _ = _ratings(session, seed)
    assert restaurant == (Decimal("4.0"), 1)


@pytest.mark.integration
def test_delete_review_resets_to_zero(client, seed, customer_headers, delivered_order, session):
    review_id = _submit(client, customer_headers, delivered_order).json()["data"]["id"]
    resp = client.delete(f"/reviews/{review_id}", headers=customer_headers)
    assert resp.status_code == 200
    restaurant, partner = _ratings(session, seed)
    assert restaurant == (Decimal("0"), 0)
    assert partner == (Decimal("0"), 0)


@pytest.mark.integration
def test_cannot_edit_someone_elses_review(client, seed, customer_headers, delivered_order, headers_for):
    review_id = _submit(client, customer_headers, delivered_order).json()["data"]["id"]
    stranger = headers_for(seed.other_customer_id, "customer", name="Ravi")
    assert client.put(f"/reviews/{review_id}", json={"restaurant_rating": 1}, headers=stranger).status_code == 404
    assert client.delete(f"/reviews/{review_id}", headers=stranger).status_code == 404


@pytest.mark.integration
def test_public_listings(client, seed, customer_headers, delivered_order):
    _submit(client, customer_headers, delivered_order, restaurant_rating=4, delivery_rating=3,
            restaurant_review="Tasty", delivery_review="Quick")

    body = client.get(f"/reviews/restaurant/{seed.restaurant_id}").json()
    assert body["count"] == 1
    assert body["stats"]["total_reviews"] == 1
    assert Decimal(str(body["stats"]["avg_rating"])) == Decimal("4")
    row = body["data"][0]
    assert (row["rating"], row["review"], row["customer_name"]) == (4, "Tasty", "Asha")

    body = client.get(f"/reviews/delivery-partner/{seed.partner_id}").json()
    assert body["data"][0]["rating"] == 3
    assert body["data"][0]["review"] == "Quick"


@pytest.mark.integration
def test_my_reviews(client, seed, customer_headers, delivered_order):
    _submit(client, customer_headers, delivered_order)
    body = client.get("/reviews/my-reviews", headers=customer_headers).json()
    assert body["count"] == 1
    assert body["data"][0]["restaurant_name"] == "Spice Route"
    assert body["data"][0]["order_id"] == delivered_order


@pytest.mark.integration
def test_can_review(client, seed, customer_headers, make_order, delivered_order):
    pending = make_order()
    assert client.get(f"/reviews/can-review/{pending}", headers=customer_headers).json()["data"] == {
        "can_review": False,
        "reason": "Order not yet delivered",
    }
    assert client.get(f"/reviews/can-review/{delivered_order}",
                      headers=customer_headers).json()["data"] == {"can_review": True}

    _submit(client, customer_headers, delivered_order)
    assert client.get(f"/reviews/can-review/{delivered_order}",
                      headers=customer_headers).json()["data"]["reason"] == "Already reviewed"

    stranger = make_order(customer_id=seed.other_customer_id)
    assert client.get(f"/reviews/can-review/{stranger}", headers=customer_headers).status_code == 404
