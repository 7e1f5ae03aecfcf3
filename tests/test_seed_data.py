from medtrack.database.models import Doctor, Location, Product, User
from medtrack.seed_data import DEMO_PASSWORD, seed_data


def test_seed_fills_an_empty_database_once(db):
    assert seed_data(db) is True
    assert db.query(User).count() == 3
    assert db.query(Location).count() == 3
    assert db.query(Doctor).count() == 3
    assert db.query(Product).count() == 4

    assert seed_data(db) is False
    assert db.query(User).count() == 3


def test_seeded_rep_can_log_in(client, db):
    seed_data(db)

    response = client.post("/api/auth/login", json={"email": "rep@medtrack.com", "password": DEMO_PASSWORD})

    assert response.status_code == 200
    assert response.json()["role"] == "REP"
