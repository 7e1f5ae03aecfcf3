"""
Sample ledger: one row per (doctor, product), totals and rankings.
"""

from datetime import date, timedelta

import pytest

from medtrack.database.models import Sample, Visit, VisitStatus


@pytest.fixture
def catalog(create_doctor, create_product):
    return {
        "doctor": create_doctor(),
        "other_doctor": create_doctor(),
        "product": create_product(),
        "other_product": create_product(),
    }


def _issue(client, user, doctor, product, quantity=3, issued=None, visit=None):
    body = {
        "doctorId": doctor,
        "productId": product,
        "quantity": quantity,
        "dateIssued": (issued or date.today()).isoformat(),
    }
    if visit is not None:
        body["visitId"] = visit
    return client.post("/api/samples", json=body, headers=user.headers)


def test_issue_sample_returns_names(client, create_user, catalog):
    rep = create_user()

    response = _issue(client, rep, catalog["doctor"], catalog["product"])

    assert response.status_code == 200
    body = response.json()
    assert body["quantity"] == 3
    assert body["doctorName"].startswith("Dr.")
    assert body["productName"].startswith("Product")
    assert body["visitId"] is None


def test_second_sample_for_same_pair_is_rejected(client, create_user, catalog):
    rep = create_user()
    _issue(client, rep, catalog["doctor"], catalog["product"])

    response = _issue(client, rep, catalog["doctor"], catalog["product"], quantity=1)

    assert response.status_code == 400
    assert response.json() == {
        "error": f"Sample with doctor id '{catalog['doctor']}' and product id '{catalog['product']}' already exists"
    }


def test_zero_quantity_is_rejected(client, create_user, catalog):
    response = _issue(client, create_user(), catalog["doctor"], catalog["product"], quantity=0)

    assert response.status_code == 400
    assert response.json()["error"].startswith("quantity:")


def test_future_issue_date_is_rejected(client, create_user, catalog):
    response = _issue(
        client, create_user(), catalog["doctor"], catalog["product"], issued=date.today() + timedelta(days=1)
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Date issued cannot be in the future"}


def test_linked_visit_must_be_with_the_same_doctor(client, db, create_user, catalog):
    rep = create_user()
    visit = Visit(user_id=rep.id, doctor_id=catalog["other_doctor"], visit_date=date.today(),
                  status=VisitStatus.COMPLETED)
    db.add(visit)
    db.commit()

    response = _issue(client, rep, catalog["doctor"], catalog["product"], visit=visit.id)

    assert response.status_code == 400
    assert response.json() == {"error": "Visit does not belong to the specified doctor"}


def test_update_cannot_move_onto_an_existing_pair(client, create_user, catalog):
    rep = create_user()
    _issue(client, rep, catalog["doctor"], catalog["product"])
    second = _issue(client, rep, catalog["doctor"], catalog["other_product"]).json()["id"]

    response = client.put(f"/api/samples/{second}", json={"productId": catalog["product"]}, headers=rep.headers)

    assert response.status_code == 400


def test_update_changes_quantity(client, create_user, catalog):
    rep = create_user()
    sample = _issue(client, rep, catalog["doctor"], catalog["product"]).json()["id"]

    response = client.put(f"/api/samples/{sample}", json={"quantity": 7}, headers=rep.headers)

    assert response.status_code == 200
    assert response.json()["quantity"] == 7


def test_totals_per_product_and_doctor(client, create_user, catalog):
    rep = create_user()
    _issue(client, rep, catalog["doctor"], catalog["product"], quantity=4)
    _issue(client, rep, catalog["other_doctor"], catalog["product"], quantity=6)
    _issue(client, rep, catalog["doctor"], catalog["other_product"], quantity=1)

    by_product = client.get(f"/api/samples/reports/product/{catalog['product']}/total-quantity", headers=rep.headers)
    by_doctor = client.get(f"/api/samples/reports/doctor/{catalog['doctor']}/total-quantity", headers=rep.headers)

    assert by_product.json() == 10
    assert by_doctor.json() == 5


def test_totals_are_zero_without_samples(client, create_user, catalog):
    rep = create_user()

    response = client.get(f"/api/samples/reports/product/{catalog['product']}/total-quantity", headers=rep.headers)

    assert response.json() == 0


def test_top_products_break_ties_by_product_id(client, db, create_user, create_doctor, create_product):
    rep = create_user()
    doctor = create_doctor()
    first, second, third = create_product(), create_product(), create_product()
    for product, quantity in ((third, 9), (second, 5), (first, 5)):
        db.add(Sample(doctor_id=doctor, product_id=product, quantity=quantity, date_issued=date.today()))
    db.commit()

    response = client.get("/api/samples/reports/top-products?limit=2", headers=rep.headers)

    assert [(p["productId"], p["totalSamples"]) for p in response.json()] == [(third, 9), (first, 5)]


def test_samples_by_doctor_are_newest_first(client, create_user, catalog):
    rep = create_user()
    _issue(client, rep, catalog["doctor"], catalog["product"], issued=date.today() - timedelta(days=5))
    _issue(client, rep, catalog["doctor"], catalog["other_product"], issued=date.today())

    response = client.get(f"/api/samples/doctor/{catalog['doctor']}", headers=rep.headers)

    assert [s["productId"] for s in response.json()] == [catalog["other_product"], catalog["product"]]


def test_only_admins_delete_samples(client, admin, manager, create_user, catalog):
    issuer, other_rep = create_user(), create_user()
    sample = _issue(client, issuer, catalog["doctor"], catalog["product"]).json()["id"]

    assert client.delete(f"/api/samples/{sample}", headers=other_rep.headers).status_code == 403
    assert client.delete(f"/api/samples/{sample}", headers=issuer.headers).status_code == 403
    assert client.delete(f"/api/samples/{sample}", headers=manager.headers).status_code == 403
    assert client.get(f"/api/samples/{sample}", headers=issuer.headers).status_code == 200

    assert client.delete(f"/api/samples/{sample}", headers=admin.headers).status_code == 204
    assert client.get(f"/api/samples/{sample}", headers=issuer.headers).status_code == 404
