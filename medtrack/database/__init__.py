# Database Package - Centralized imports
# Allows easy importing of models, connection utilities, and ORM objects

from .connection import (
    engine,
    Base,
    SessionLocal,
    get_db,
)

from .models import (
    # Enums
    UserRole,
    VisitStatus,
    OrderStatus,
    PaymentStatus,

    # Users & Locations
    User,
    Location,
    user_locations,

    # Catalog
    Doctor,
    Product,

    # Field activity
    Visit,
    Sample,
    Order,
    OrderItem,
)

__all__ = [
    # Connection
    "engine",
    "Base",
    "SessionLocal",
    "get_db",

    # Enums
    "UserRole",
    "VisitStatus",
    "OrderStatus",
    "PaymentStatus",

    # Users & Locations
    "User",
    "Location",
    "user_locations",

    # Catalog
    "Doctor",
    "Product",

    # Field activity
    "Visit",
    "Sample",
    "Order",
    "OrderItem",
]
