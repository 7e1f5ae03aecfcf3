"""
Shared fixtures: an in-memory SQLite database rebuilt for every test, a
TestClient over the real application, and factories for users and catalog rows.
"""

import itertools
import os
from decimal import Decimal
from types import SimpleNamespace

# Must be set before medtrack is imported: config is read once at import time.
os.environ["DB_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-signing-key-that-is-long-enough-for-hs256"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ.pop("DB_USER", None)
os.environ.pop("DB_PASSWORD", None)

import pytest
from fastapi.testclient import TestClient

from medtrack.main import app
from medtrack.database.connection import Base, SessionLocal, engine
from medtrack.database.models import Doctor, Location, Product, User, UserRole
from medtrack.security import create_access_token, hash_password


# ── Helpers ──────────────────────────────────────────────────────────

def bearer(user_id: int, role: UserRole) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


# ── Fixtures ─────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_database():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def create_location(db):
    counter = itertools.count(1)

    def _create(name=None, city="Mumbai", active=True):
        n = next(counter)
        location = Location(name=name or f"Location {n}", city=city, country="India", is_active=active)
        db.add(location)
        db.commit()
        return location.id

    return _create


@pytest.fixture
def create_user(db):
    """Insert a user directly and hand back its id, role, email, password and auth headers."""
    counter = itertools.count(1)

    def _create(role=UserRole.REP, location_ids=(), name=None, email=None, password="secret123", active=True):
        n = next(counter)
        user = User(
            name=name or f"{role.value.title()} {n}",
            email=email or f"{role.value.lower()}{n}@medtrack.test",
            password_hash=hash_password(password),
            role=role,
            is_active=active,
        )
        user.locations = [db.get(Location, location_id) for location_id in location_ids]
        db.add(user)
        db.commit()
        return SimpleNamespace(
            id=user.id,
            role=role,
            email=user.email,
            name=user.name,
            password=password,
            headers=bearer(user.id, role),
        )

    return _create


@pytest.fixture
def admin(create_user):
    return create_user(UserRole.ADMIN, name="Ada Admin")


@pytest.fixture
def manager(create_user):
    return create_user(UserRole.MANAGER, name="Max Manager")


@pytest.fixture
def create_doctor(db):
    counter = itertools.count(1)

    def _create(name=None, specialty="Cardiology", hospital="City Hospital"):
        doctor = Doctor(name=name or f"Dr. Doctor {next(counter)}", specialty=specialty, hospital=hospital)
        db.add(doctor)
        db.commit()
        return doctor.id

    return _create


@pytest.fixture
def create_product(db):
    counter = itertools.count(1)

    def _create(name=None, price="100.00", category="Cardiac", manufacturer="Cipla"):
        product = Product(
            name=name or f"Product {next(counter)}",
            price=Decimal(price),
            category=category,
            manufacturer=manufacturer,
            stock_quantity=100,
        )
        db.add(product)
        db.commit()
        return product.id

    return _create
