"""
Order engine.

Orders own their line items. Each line's subtotal is
``unit_price * quantity * (1 - discount_percent / 100)`` rounded half-up to
cents, and the order total is the sum of the subtotals. Order numbers read
``ORD-YYYYMMDD-NNNNN``; the unique index on ``orders.order_number`` is the
final arbiter and a colliding commit is retried with a fresh number.

Revenue reports leave CANCELLED orders out.
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
from pydantic import Field
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import (
    Order, OrderItem, OrderStatus, PaymentStatus, Product, Doctor, Visit,
)
from medtrack.exceptions import BadRequestError, NotFoundError
from medtrack.api.common import (
    CENT, CamelModel, Money, Timestamp, ensure_date_range, ensure_exists, ensure_not_future,
    get_or_404, to_money, today,
)
from medtrack.api.doctors import get_doctor
from medtrack.api.products import get_product

router = APIRouter(prefix="/api/orders", tags=["Orders"])
logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 5
HUNDRED = Decimal("100")
# column limits: Numeric(10, 2) amounts, Integer quantities
MAX_AMOUNT = Decimal("99999999.99")
MAX_QUANTITY = 2_147_483_647

# ==================== PYDANTIC MODELS ====================

class OrderItemRequest(CamelModel):
    product_id: int
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)
    unit_price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class OrderRequest(CamelModel):
    doctor_id: int
    order_date: date
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None
    visit_id: Optional[int] = None
    order_items: List[OrderItemRequest]


class OrderUpdateRequest(CamelModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = None


class OrderItemResponse(CamelModel):
    id: int
    order_id: int
    product_id: int
    product_name: Optional[str] = None
    product_category: Optional[str] = None
    quantity: int
    unit_price: Money
    discount_percent: Money
    subtotal: Money


class OrderResponse(CamelModel):
    id: int
    order_number: str
    doctor_id: int
    doctor_name: Optional[str] = None
    doctor_specialty: Optional[str] = None
    doctor_hospital: Optional[str] = None
    order_date: date
    status: OrderStatus
    payment_status: PaymentStatus
    total_amount: Money
    notes: Optional[str] = None
    visit_id: Optional[int] = None
    visit_date: Optional[date] = None
    order_items: List[OrderItemResponse] = []
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None


class TopSellingProductResponse(CamelModel):
    product_id: int
    product_name: str
    category: Optional[str] = None
    total_quantity: int
    total_revenue: Money

# ==================== HELPER FUNCTIONS ====================

def compute_subtotal(unit_price, quantity: int, discount_percent=None) -> Decimal:
    """Line amount after discount, rounded half-up to cents."""
    discount = Decimal(str(discount_percent)) if discount_percent is not None else Decimal("0")
    gross = Decimal(str(unit_price)) * quantity
    return (gross * (1 - discount / HUNDRED)).quantize(CENT, rounding=ROUND_HALF_UP)


def order_item_to_dict(item: OrderItem) -> dict:
    product = item.product
    return {
        "id": item.id,
        "order_id": item.order_id,
        "product_id": item.product_id,
        "product_name": product.name if product else None,
        "product_category": product.category if product else None,
        "quantity": item.quantity,
        "unit_price": item.unit_price,
        "discount_percent": item.discount_percent,
        "subtotal": item.subtotal,
    }


def order_to_dict(order: Order) -> dict:
    doctor, visit = order.doctor, order.visit
    return {
        "id": order.id,
        "order_number": order.order_number,
        "doctor_id": order.doctor_id,
        "doctor_name": doctor.name if doctor else None,
        "doctor_specialty": doctor.specialty if doctor else None,
        "doctor_hospital": doctor.hospital if doctor else None,
        "order_date": order.order_date,
        "status": order.status,
        "payment_status": order.payment_status,
        "total_amount": order.total_amount,
        "notes": order.notes,
        "visit_id": order.visit_id,
        "visit_date": visit.visit_date if visit else None,
        "order_items": [order_item_to_dict(item) for item in order.items],
        "created_at": order.created_at,
        "updated_at": order.updated_at,
    }


def order_query(db: Session):
    return db.query(Order).options(
        joinedload(Order.doctor),
        joinedload(Order.visit),
        joinedload(Order.items).joinedload(OrderItem.product),
    )


def get_order(db: Session, order_id: int) -> Order:
    order = order_query(db).filter(Order.id == order_id).first()
    if order is None:
        raise NotFoundError(f"Order not found with id: {order_id}")
    return order


def get_order_by_number(db: Session, order_number: str) -> Order:
    order = order_query(db).filter(Order.order_number == order_number).first()
    if order is None:
        raise NotFoundError(f"Order not found with number: {order_number}")
    return order


def order_number_taken(db: Session, order_number: str) -> bool:
    return db.query(Order.id).filter(Order.order_number == order_number).first() is not None


def next_order_number(db: Session) -> str:
    """ORD-<today>-<count + 1>, stepping past numbers already taken."""
    prefix = f"ORD-{today():%Y%m%d}-"
    sequence = (db.query(func.count(Order.id)).scalar() or 0) + 1
    while order_number_taken(db, f"{prefix}{sequence:05d}"):
        sequence += 1
    return f"{prefix}{sequence:05d}"


def build_order(db: Session, request: OrderRequest) -> Order:
    doctor = get_doctor(db, request.doctor_id)

    visit = None
    if request.visit_id is not None:
        visit = get_or_404(db, Visit, request.visit_id, "Visit")
        if visit.doctor_id != doctor.id:
            raise BadRequestError("Visit does not belong to the specified doctor")

    ensure_not_future(request.order_date, "Order date")

    if not request.order_items:
        raise BadRequestError("Order must have at least one item")

    items = []
    for item_request in request.order_items:
        product = get_product(db, item_request.product_id)
        unit_price = to_money(item_request.unit_price)
        discount = to_money(item_request.discount_percent)
        items.append(OrderItem(
            product=product,
            quantity=item_request.quantity,
            unit_price=unit_price,
            discount_percent=discount,
            subtotal=compute_subtotal(unit_price, item_request.quantity, discount),
        ))

    total_amount = sum((item.subtotal for item in items), Decimal("0.00"))
    if total_amount > MAX_AMOUNT:
        raise BadRequestError(f"Order total cannot exceed {MAX_AMOUNT}")

    return Order(
        order_number=next_order_number(db),
        doctor=doctor,
        visit=visit,
        order_date=request.order_date,
        status=request.status or OrderStatus.PENDING,
        payment_status=request.payment_status or PaymentStatus.UNPAID,
        total_amount=total_amount,
        notes=request.notes,
        items=items,
    )


def place_order(db: Session, request: OrderRequest) -> Order:
    """Validate, price and persist an order with its items in one transaction."""
    for attempt in range(1, MAX_ORDER_NUMBER_ATTEMPTS + 1):
        order = build_order(db, request)
        order_number = order.order_number
        db.add(order)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            # only a concurrent insert of the same number is worth retrying
            if not order_number_taken(db, order_number):
                raise
            logger.warning(
                "Order number %s collided (attempt %d of %d)",
                order_number, attempt, MAX_ORDER_NUMBER_ATTEMPTS,
            )
            continue
        logger.info("Placed order %s for doctor %s, total %s", order.order_number, request.doctor_id, order.total_amount)
        return get_order(db, order.id)

    raise BadRequestError("Could not allocate a unique order number, please retry")


def update_order(db: Session, order_id: int, request: OrderUpdateRequest) -> Order:
    """Status, payment status and notes only; totals are never recomputed here."""
    order = get_order(db, order_id)
    if request.status is not None:
        order.status = request.status
    if request.payment_status is not None:
        order.payment_status = request.payment_status
    if request.notes is not None:
        order.notes = request.notes
    order.updated_at = datetime.now()
    db.commit()
    return get_order(db, order.id)


def delete_order(db: Session, order_id: int) -> None:
    order = get_order(db, order_id)
    db.delete(order)
    db.commit()
    logger.info("Deleted order %s", order.order_number)


def find_orders(
    db: Session,
    doctor_id: Optional[int] = None,
    visit_id: Optional[int] = None,
    order_status: Optional[OrderStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = None,
) -> List[Order]:
    query = order_query(db)
    if doctor_id is not None:
        query = query.filter(Order.doctor_id == doctor_id)
    if visit_id is not None:
        query = query.filter(Order.visit_id == visit_id)
    if order_status is not None:
        query = query.filter(Order.status == order_status)
    if payment_status is not None:
        query = query.filter(Order.payment_status == payment_status)
    if start_date is not None:
        query = query.filter(Order.order_date >= start_date)
    if end_date is not None:
        query = query.filter(Order.order_date <= end_date)
    query = query.order_by(Order.order_date.desc(), Order.created_at.desc(), Order.id.desc())
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def _revenue(query) -> Decimal:
    total = query.filter(Order.status != OrderStatus.CANCELLED).scalar()
    return to_money(total)


def total_revenue(db: Session) -> Decimal:
    return _revenue(db.query(func.sum(Order.total_amount)))


def total_revenue_by_doctor(db: Session, doctor_id: int) -> Decimal:
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    return _revenue(db.query(func.sum(Order.total_amount)).filter(Order.doctor_id == doctor_id))


def total_revenue_by_date_range(db: Session, start_date: date, end_date: date) -> Decimal:
    ensure_date_range(start_date, end_date)
    return _revenue(db.query(func.sum(Order.total_amount)).filter(
        Order.order_date >= start_date,
        Order.order_date <= end_date,
    ))


def count_by_status(db: Session, order_status: OrderStatus) -> int:
    return db.query(func.count(Order.id)).filter(Order.status == order_status).scalar() or 0


def top_selling_products(db: Session, limit: int = 5) -> List[dict]:
    quantity = func.sum(OrderItem.quantity).label("total_quantity")
    revenue = func.sum(OrderItem.subtotal).label("total_revenue")
    rows = db.query(
        Product.id, Product.name, Product.category, quantity, revenue,
    ).join(OrderItem, OrderItem.product_id == Product.id).join(
        Order, Order.id == OrderItem.order_id
    ).filter(
        Order.status != OrderStatus.CANCELLED
    ).group_by(
        Product.id, Product.name, Product.category
    ).order_by(quantity.desc(), Product.id.asc()).limit(limit).all()

    return [
        {
            "product_id": row.id,
            "product_name": row.name,
            "category": row.category,
            "total_quantity": int(row.total_quantity or 0),
            "total_revenue": to_money(row.total_revenue),
        }
        for row in rows
    ]


def _as_list(orders: List[Order]) -> List[dict]:
    return [order_to_dict(o) for o in orders]

# ==================== API ENDPOINTS ====================

@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def place_order_endpoint(request: OrderRequest, db: Session = Depends(get_db)):
    return order_to_dict(place_order(db, request))


@router.get("", response_model=List[OrderResponse])
def get_all_orders(db: Session = Depends(get_db)):
    return _as_list(find_orders(db))


@router.get("/recent", response_model=List[OrderResponse])
def get_recent_orders(limit: int = Query(10, ge=1), db: Session = Depends(get_db)):
    return _as_list(find_orders(db, limit=limit))


@router.get("/date-range", response_model=List[OrderResponse])
def get_orders_by_date_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    ensure_date_range(start_date, end_date)
    return _as_list(find_orders(db, start_date=start_date, end_date=end_date))


@router.get("/doctor/{doctor_id}", response_model=List[OrderResponse])
def get_orders_by_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    return _as_list(find_orders(db, doctor_id=doctor_id))


@router.get("/doctor/{doctor_id}/date-range", response_model=List[OrderResponse])
def get_orders_by_doctor_and_date_range(
    doctor_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    ensure_date_range(start_date, end_date)
    return _as_list(find_orders(db, doctor_id=doctor_id, start_date=start_date, end_date=end_date))


@router.get("/visit/{visit_id}", response_model=List[OrderResponse])
def get_orders_by_visit(visit_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Visit, visit_id, "Visit")
    return _as_list(find_orders(db, visit_id=visit_id))


@router.get("/status/{order_status}", response_model=List[OrderResponse])
def get_orders_by_status(order_status: OrderStatus, db: Session = Depends(get_db)):
    return _as_list(find_orders(db, order_status=order_status))


@router.get("/payment-status/{payment_status}", response_model=List[OrderResponse])
def get_orders_by_payment_status(payment_status: PaymentStatus, db: Session = Depends(get_db)):
    return _as_list(find_orders(db, payment_status=payment_status))


@router.get("/order-number/{order_number}", response_model=OrderResponse)
def get_order_by_order_number(order_number: str, db: Session = Depends(get_db)):
    return order_to_dict(get_order_by_number(db, order_number))


@router.get("/reports/total-revenue", response_model=float)
def get_total_revenue(db: Session = Depends(get_db)):
    """Revenue over every order that is not CANCELLED"""
    return float(total_revenue(db))


@router.get("/reports/total-revenue/date-range", response_model=float)
def get_total_revenue_by_date_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    return float(total_revenue_by_date_range(db, start_date, end_date))


@router.get("/reports/doctor/{doctor_id}/total-revenue", response_model=float)
def get_total_revenue_by_doctor(doctor_id: int, db: Session = Depends(get_db)):
    return float(total_revenue_by_doctor(db, doctor_id))


@router.get("/reports/count-by-status/{order_status}", response_model=int)
def get_count_by_status(order_status: OrderStatus, db: Session = Depends(get_db)):
    return count_by_status(db, order_status)


@router.get("/reports/top-selling-products", response_model=List[TopSellingProductResponse])
def get_top_selling_products(limit: int = Query(5, ge=1), db: Session = Depends(get_db)):
    return top_selling_products(db, limit)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order_by_id(order_id: int, db: Session = Depends(get_db)):
    return order_to_dict(get_order(db, order_id))


@router.patch("/{order_id}", response_model=OrderResponse)
def update_order_endpoint(order_id: int, request: OrderUpdateRequest, db: Session = Depends(get_db)):
    return order_to_dict(update_order(db, order_id, request))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order_endpoint(order_id: int, db: Session = Depends(get_db)):
    delete_order(db, order_id)
