# medtrack/seed_data.py
"""
Demo data for an empty database.

    python -m medtrack.seed_data
"""
import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from medtrack import config
from medtrack.database.connection import SessionLocal, engine, Base
from medtrack.database.models import User, UserRole, Location, Doctor, Product
from medtrack.security import hash_password

logger = logging.getLogger(__name__)

DEMO_PASSWORD = config.SEED_PASSWORD

LOCATIONS = [
    {"name": "Andheri East", "city": "Mumbai", "state": "Maharashtra", "address": "MIDC Central Road"},
    {"name": "Bandra West", "city": "Mumbai", "state": "Maharashtra", "address": "Hill Road"},
    {"name": "Koramangala", "city": "Bengaluru", "state": "Karnataka", "address": "80 Feet Road"},
]

DOCTORS = [
    {"name": "Dr. Rajesh Sharma", "specialty": "Cardiology", "hospital": "Lilavati Hospital", "phone": "+919820000001"},
    {"name": "Dr. Priya Desai", "specialty": "General Physician", "hospital": "Hinduja Hospital", "phone": "+919820000002"},
    {"name": "Dr. Anil Kumar", "specialty": "Dermatology", "hospital": "Manipal Hospital", "phone": "+919820000003"},
]

PRODUCTS = [
    {"name": "Paracetamol 500mg", "category": "Pain Relief", "manufacturer": "Cipla", "price": "20.00", "stock_quantity": 500},
    {"name": "Amoxicillin 250mg", "category": "Antibiotic", "manufacturer": "Sun Pharma", "price": "120.00", "stock_quantity": 200},
    {"name": "Cetirizine 10mg", "category": "Allergy", "manufacturer": "Dr. Reddy's", "price": "40.00", "stock_quantity": 300},
    {"name": "Atorvastatin 10mg", "category": "Cardiac", "manufacturer": "Lupin", "price": "95.50", "stock_quantity": 150},
]


def seed_data(db: Session) -> bool:
    """Insert the demo rows; returns False when the database already has users."""
    existing_users = db.query(User).count()
    if existing_users > 0:
        logger.warning("Database already has %d users, skipping seeding", existing_users)
        return False

    locations = [Location(country=config.DEFAULT_COUNTRY, **data) for data in LOCATIONS]
    db.add_all(locations)

    password_hash = hash_password(DEMO_PASSWORD)
    db.add_all([
        User(
            name="Admin User",
            email="admin@medtrack.com",
            password_hash=password_hash,
            role=UserRole.ADMIN,
            locations=list(locations),
        ),
        User(
            name="Meera Iyer",
            email="manager@medtrack.com",
            password_hash=password_hash,
            role=UserRole.MANAGER,
            locations=list(locations),
        ),
        User(
            name="Rahul Verma",
            email="rep@medtrack.com",
            password_hash=password_hash,
            role=UserRole.REP,
            phone="+919876543210",
            locations=locations[:2],
        ),
    ])

    db.add_all([Doctor(**data) for data in DOCTORS])
    db.add_all([
        Product(**{**data, "price": Decimal(data["price"])}) for data in PRODUCTS
    ])
    db.commit()

    logger.info(
        "Seeded %d users, %d locations, %d doctors, %d products",
        3, len(LOCATIONS), len(DOCTORS), len(PRODUCTS),
    )
    return True


def main():
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_data(db)
    except Exception:
        db.rollback()
        logger.exception("Error during seeding")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
