"""
MedTrack - Database Models
Users, catalog (locations, doctors, products) and field activity (visits, samples, orders)
"""
from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Date, Text, Boolean, Numeric,
    Table, UniqueConstraint, Index, text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from .connection import Base
import enum


# ============================================
# ENUMS
# ============================================

class UserRole(str, enum.Enum):
    REP = "REP"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class VisitStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    REFUNDED = "REFUNDED"


def _enum_column(enum_cls, **kwargs):
    return Column(SQLEnum(enum_cls, native_enum=False, length=20), **kwargs)


# ============================================
# USERS & LOCATIONS
# ============================================

user_locations = Table(
    "user_locations",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("location_id", Integer, ForeignKey("locations.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(150), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = _enum_column(UserRole, nullable=False, default=UserRole.REP)
    phone = Column(String(20))
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    locations = relationship(
        "Location",
        secondary=user_locations,
        back_populates="users",
        order_by="Location.id",
    )
    visits = relationship("Visit", back_populates="user")


class Location(Base):
    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=False, index=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100))
    country = Column(String(100), default="India")
    address = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    users = relationship("User", secondary=user_locations, back_populates="locations")
    visits = relationship("Visit", back_populates="location")


# ============================================
# CATALOG
# ============================================

class Doctor(Base):
    __tablename__ = "doctors"
    __table_args__ = (
        UniqueConstraint("name", "hospital", name="uq_doctors_name_hospital"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    specialty = Column(String(50))
    hospital = Column(String(100))
    phone = Column(String(20))
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    visits = relationship("Visit", back_populates="doctor")
    samples = relationship("Sample", back_populates="doctor")
    orders = relationship("Order", back_populates="doctor")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    category = Column(String(50))
    manufacturer = Column(String(100))
    description = Column(Text)
    price = Column(Numeric(10, 2))
    stock_quantity = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    samples = relationship("Sample", back_populates="product")
    order_items = relationship("OrderItem", back_populates="product")


# ============================================
# FIELD ACTIVITY
# ============================================

class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        # at most one IN_PROGRESS visit per user
        Index(
            "uq_visits_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'IN_PROGRESS'"),
            sqlite_where=text("status = 'IN_PROGRESS'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    visit_date = Column(Date, nullable=False)
    check_in_time = Column(DateTime)
    check_out_time = Column(DateTime)
    status = _enum_column(VisitStatus, nullable=False, default=VisitStatus.COMPLETED)
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    user = relationship("User", back_populates="visits")
    doctor = relationship("Doctor", back_populates="visits")
    location = relationship("Location", back_populates="visits")
    samples = relationship("Sample", back_populates="visit")
    orders = relationship("Order", back_populates="visit")


class Sample(Base):
    __tablename__ = "samples"
    __table_args__ = (
        UniqueConstraint("doctor_id", "product_id", name="uq_samples_doctor_product"),
    )

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="SET NULL"), nullable=True)
    quantity = Column(Integer, nullable=False)
    date_issued = Column(Date, nullable=False)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    doctor = relationship("Doctor", back_populates="samples")
    product = relationship("Product", back_populates="samples")
    visit = relationship("Visit", back_populates="samples")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, index=True, nullable=False)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    visit_id = Column(Integer, ForeignKey("visits.id", ondelete="SET NULL"), nullable=True)
    order_date = Column(Date, nullable=False)
    status = _enum_column(OrderStatus, nullable=False, default=OrderStatus.PENDING)
    payment_status = _enum_column(PaymentStatus, nullable=False, default=PaymentStatus.UNPAID)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    # Relationships
    doctor = relationship("Doctor", back_populates="orders")
    visit = relationship("Visit", back_populates="orders")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    subtotal = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    # Relationships
    order = relationship("Order", back_populates="items")
    product = relationship("Product", back_populates="order_items")
