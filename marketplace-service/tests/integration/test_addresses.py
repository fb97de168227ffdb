"""
Integration tests for customer address management.
"""

import pytest

from marketplace.models import Address


def _add(client, headers, **fields):
    body = {"address_line1": "21 Brigade Rd", "city": "Bengaluru", **fields}
    return client.post("/addresses", json=body, headers=headers)


@pytest.mark.integration
def test_add_and_list_addresses(client, seed, customer_headers):
    resp = _add(client, customer_headers, pincode="560025", state="Karnataka")
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["user_id"] == seed.customer_id
    assert data["is_default"] is False

    body = client.get("/addresses", headers=customer_headers).json()
    assert body["count"] == 2
    assert {row["address_line1"] for row in body["data"]} == {"12 MG Road", "21 Brigade Rd"}


@pytest.mark.integration
def test_only_one_default_address(client, customer_headers, session):
    first = _add(client, customer_headers, is_default=True).json()["data"]["id"]
    second = _add(client, customer_headers, address_line1="5 Church St", is_default=True).json()["data"]["id"]

    assert session.get(Address, first, populate_existing=True).is_default is False
    assert session.get(Address, second, populate_existing=True).is_default is True
    listed = client.get("/addresses", headers=customer_headers).json()["data"]
    assert listed[0]["id"] == second


@pytest.mark.integration
def test_update_to_default_clears_others(client, seed, customer_headers, session):
    other = _add(client, customer_headers, is_default=True).json()["data"]["id"]
    resp = client.put(f"/addresses/{seed.address_id}", json={"is_default": True, "pincode": "560002"},
                      headers=customer_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["pincode"] == "560002"
    assert session.get(Address, other, populate_existing=True).is_default is False


@pytest.mark.integration
def test_update_requires_fields(client, seed, customer_headers):
    resp = client.put(f"/addresses/{seed.address_id}", json={}, headers=customer_headers)
    assert resp.status_code == 400


@pytest.mark.integration
def test_addresses_are_private(client, seed, customer_headers):
    resp = client.put(f"/addresses/{seed.other_address_id}", json={"city": "Pune"}, headers=customer_headers)
    assert resp.status_code == 404
    assert client.delete(f"/addresses/{seed.other_address_id}", headers=customer_headers).status_code == 404


@pytest.mark.integration
def test_delete_address(client, customer_headers, session):
    address_id = _add(client, customer_headers).json()["data"]["id"]
    assert client.delete(f"/addresses/{address_id}", headers=customer_headers).status_code == 200
    assert session.get(Address, address_id, populate_existing=True) is None


@pytest.mark.integration
def test_address_fields_validated(client, customer_headers):
    resp = client.post("/addresses", json={"address_line1": "No city"}, headers=customer_headers)
    assert resp.status_code == 400


@pytest.mark.integration
def test_remarking_default_keeps_it(client, customer_headers, session):
    address_id = _add(client, customer_headers, is_default=True).json()["data"]["id"]
    resp = client.put(f"/addresses/{address_id}", json={"is_default": True}, headers=customer_headers)
    assert resp.status_code == 200
    assert session.get(Address, address_id, populate_existing=True).is_default is True
