"""
Catalog stores: locations, doctors and products.
"""

from datetime import date
from decimal import Decimal

from medtrack.database.models import Order, OrderItem, OrderStatus, PaymentStatus


# ── Locations ────────────────────────────────────────────────────────

def test_create_location_defaults_country(client, admin):
    response = client.post("/api/locations", json={"name": "Andheri", "city": "Mumbai"}, headers=admin.headers)

    assert response.status_code == 200
    assert response.json()["country"] == "India"
    assert response.json()["isActive"] is True


def test_location_name_is_unique_ignoring_case(client, admin):
    client.post("/api/locations", json={"name": "Andheri", "city": "Mumbai"}, headers=admin.headers)

    response = client.post("/api/locations", json={"name": "ANDHERI", "city": "Mumbai"}, headers=admin.headers)

    assert response.status_code == 400
    assert "already exists" in response.json()["error"]


def test_bulk_create_accepts_fifty(client, admin):
    payload = {"locations": [{"name": f"Loc {i}", "city": "Pune"} for i in range(50)]}

    response = client.post("/api/locations/bulk", json=payload, headers=admin.headers)

    assert response.status_code == 200
    assert len(response.json()) == 50


def test_bulk_create_rejects_fifty_one(client, admin):
    payload = {"locations": [{"name": f"Loc {i}", "city": "Pune"} for i in range(51)]}

    response = client.post("/api/locations/bulk", json=payload, headers=admin.headers)

    assert response.status_code == 400
    assert client.get("/api/locations", headers=admin.headers).json() == []


def test_bulk_create_rejects_empty_list(client, admin):
    response = client.post("/api/locations/bulk", json={"locations": []}, headers=admin.headers)

    assert response.status_code == 400


def test_bulk_create_is_all_or_nothing(client, admin):
    client.post("/api/locations", json={"name": "Taken", "city": "Pune"}, headers=admin.headers)
    payload = {"locations": [{"name": "Fresh", "city": "Pune"}, {"name": "taken", "city": "Pune"}]}

    response = client.post("/api/locations/bulk", json=payload, headers=admin.headers)

    assert response.status_code == 400
    names = [loc["name"] for loc in client.get("/api/locations", headers=admin.headers).json()]
    assert names == ["Taken"]


def test_bulk_create_rejects_duplicates_within_payload(client, admin):
    payload = {"locations": [{"name": "Twin", "city": "Pune"}, {"name": "twin", "city": "Goa"}]}

    response = client.post("/api/locations/bulk", json=payload, headers=admin.headers)

    assert response.status_code == 400


def test_active_only_filter_and_activation(client, admin, create_location):
    active = create_location()
    inactive = create_location(active=False)

    ids = [loc["id"] for loc in client.get("/api/locations?activeOnly=true", headers=admin.headers).json()]
    assert ids == [active]

    client.put(f"/api/locations/{inactive}/activate", headers=admin.headers)
    ids = [loc["id"] for loc in client.get("/api/locations?activeOnly=true", headers=admin.headers).json()]
    assert ids == [active, inactive]


def test_location_search_matches_name_or_city(client, admin, create_location):
    by_name = create_location(name="Bandra West", city="Mumbai")
    by_city = create_location(name="MG Road", city="Bandra")
    create_location(name="Koramangala", city="Bengaluru")

    response = client.get("/api/locations/search?q=bandra", headers=admin.headers)

    assert sorted(loc["id"] for loc in response.json()) == sorted([by_name, by_city])


def test_locations_by_city(client, admin, create_location):
    pune = create_location(city="Pune")
    create_location(city="Goa")

    response = client.get("/api/locations/city/PUNE", headers=admin.headers)

    assert [loc["id"] for loc in response.json()] == [pune]


def test_update_location_rejects_name_of_another(client, admin, create_location):
    create_location(name="First")
    second = create_location(name="Second")

    response = client.put(
        f"/api/locations/{second}", json={"name": "first", "city": "Mumbai"}, headers=admin.headers
    )

    assert response.status_code == 400


def test_reps_read_but_cannot_write_locations(client, create_user, create_location):
    rep = create_user()
    create_location()

    assert client.get("/api/locations", headers=rep.headers).status_code == 200
    response = client.post("/api/locations", json={"name": "X", "city": "Y"}, headers=rep.headers)
    assert response.status_code == 403


def test_delete_location_drops_assignments(client, admin, create_location, create_user):
    location = create_location()
    rep = create_user(location_ids=[location])

    assert client.delete(f"/api/locations/{location}", headers=admin.headers).status_code == 204
    assert client.get(f"/api/users/{rep.id}", headers=admin.headers).json()["locationIds"] == []


# ── Doctors ──────────────────────────────────────────────────────────

def test_doctor_name_and_hospital_are_unique_together(client, admin):
    body = {"name": "Dr. Rao", "specialty": "ENT", "hospital": "Apollo"}
    assert client.post("/api/doctors", json=body, headers=admin.headers).status_code == 200

    duplicate = client.post("/api/doctors", json=body, headers=admin.headers)
    assert duplicate.status_code == 400
    assert "already exists" in duplicate.json()["error"]

    elsewhere = client.post("/api/doctors", json={**body, "hospital": "Fortis"}, headers=admin.headers)
    assert elsewhere.status_code == 200


def test_doctor_update_rechecks_uniqueness(client, admin, create_doctor):
    create_doctor(name="Dr. A", hospital="Apollo")
    other = create_doctor(name="Dr. B", hospital="Apollo")

    response = client.put(f"/api/doctors/{other}", json={"name": "Dr. A", "hospital": "Apollo"}, headers=admin.headers)

    assert response.status_code == 400


def test_doctor_search_and_filters(client, admin, create_doctor):
    rao = create_doctor(name="Dr. Rao", specialty="ENT", hospital="Apollo")
    create_doctor(name="Dr. Mehta", specialty="Cardiology", hospital="Fortis")

    assert [d["id"] for d in client.get("/api/doctors/search?name=RAO", headers=admin.headers).json()] == [rao]
    assert [d["id"] for d in client.get("/api/doctors/specialty/ent", headers=admin.headers).json()] == [rao]
    assert [d["id"] for d in client.get("/api/doctors/hospital/apollo", headers=admin.headers).json()] == [rao]


def test_doctor_requires_name(client, admin):
    response = client.post("/api/doctors", json={"specialty": "ENT"}, headers=admin.headers)

    assert response.status_code == 400
    assert response.json()["error"].startswith("name:")


def test_unknown_doctor_is_404(client, admin):
    response = client.get("/api/doctors/404", headers=admin.headers)

    assert response.status_code == 404
    assert response.json() == {"error": "Doctor not found with id: 404"}


# ── Products ─────────────────────────────────────────────────────────

def test_product_round_trips_money_as_number(client, admin):
    body = {"name": "Atorva 10", "category": "Cardiac", "price": 95.5, "stockQuantity": 10}

    response = client.post("/api/products", json=body, headers=admin.headers)

    assert response.status_code == 200
    assert response.json()["price"] == 95.5
    assert response.json()["stockQuantity"] == 10


def test_product_name_is_unique(client, admin, create_product):
    create_product(name="Atorva 10")

    response = client.post("/api/products", json={"name": "Atorva 10"}, headers=admin.headers)

    assert response.status_code == 400
    assert response.json() == {"error": "Product with name 'Atorva 10' already exists"}


def test_product_rejects_negative_price(client, admin):
    response = client.post("/api/products", json={"name": "Bad", "price": -1}, headers=admin.headers)

    assert response.status_code == 400


def test_product_search_and_category(client, admin, create_product):
    atorva = create_product(name="Atorva 10", category="Cardiac")
    create_product(name="Cetrizine", category="Allergy")

    assert [p["id"] for p in client.get("/api/products/search?name=torva", headers=admin.headers).json()] == [atorva]
    assert [p["id"] for p in client.get("/api/products/category/CARDIAC", headers=admin.headers).json()] == [atorva]


def test_product_on_an_order_cannot_be_deleted(client, admin, db, create_product, create_doctor):
    product = create_product()
    doctor = create_doctor()
    db.add(Order(
        order_number="ORD-20240101-00001",
        doctor_id=doctor,
        order_date=date(2024, 1, 1),
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.UNPAID,
        total_amount=Decimal("100.00"),
        items=[OrderItem(product_id=product, quantity=1, unit_price=Decimal("100.00"),
                         discount_percent=Decimal("0"), subtotal=Decimal("100.00"))],
    ))
    db.commit()

    response = client.delete(f"/api/products/{product}", headers=admin.headers)

    assert response.status_code == 400
    assert client.get(f"/api/products/{product}", headers=admin.headers).status_code == 200


def test_unreferenced_product_can_be_deleted(client, admin, create_product):
    product = create_product()

    assert client.delete(f"/api/products/{product}", headers=admin.headers).status_code == 204
    assert client.get(f"/api/products/{product}", headers=admin.headers).status_code == 404
