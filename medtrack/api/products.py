from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlalchemy import func
from pydantic import Field
from typing import List, Optional
from decimal import Decimal
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import Product, OrderItem
from medtrack.exceptions import BadRequestError
from medtrack.api.common import (
    CamelModel, Money, NonBlankStr, Timestamp, commit_or_bad_request, get_or_404, to_money,
)

router = APIRouter(prefix="/api/products", tags=["Products"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class ProductRequest(CamelModel):
    name: NonBlankStr
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    stock_quantity: Optional[int] = Field(None, ge=0)


class ProductResponse(CamelModel):
    id: int
    name: str
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Money] = None
    stock_quantity: Optional[int] = None
    created_at: Optional[Timestamp] = None

# ==================== HELPER FUNCTIONS ====================

def product_to_dict(product: Product) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "category": product.category,
        "manufacturer": product.manufacturer,
        "description": product.description,
        "price": product.price,
        "stock_quantity": product.stock_quantity,
        "created_at": product.created_at,
    }


def get_product(db: Session, product_id: int) -> Product:
    return get_or_404(db, Product, product_id, "Product")


def ensure_product_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    existing = db.query(Product).filter(Product.name == name).first()
    if existing is not None and existing.id != exclude_id:
        raise BadRequestError(f"Product with name '{name}' already exists")


def _apply(product: Product, request: ProductRequest, name: str) -> None:
    product.name = name
    product.category = request.category
    product.manufacturer = request.manufacturer
    product.description = request.description
    product.price = to_money(request.price) if request.price is not None else None
    product.stock_quantity = request.stock_quantity if request.stock_quantity is not None else 0


def create_product(db: Session, request: ProductRequest) -> Product:
    name = request.name.strip()
    ensure_product_name_free(db, name)
    product = Product()
    _apply(product, request, name)
    db.add(product)
    commit_or_bad_request(db, f"Product with name '{name}' already exists")
    db.refresh(product)
    return product


def update_product(db: Session, product_id: int, request: ProductRequest) -> Product:
    product = get_product(db, product_id)
    name = request.name.strip()
    ensure_product_name_free(db, name, exclude_id=product.id)
    _apply(product, request, name)
    commit_or_bad_request(db, f"Product with name '{name}' already exists")
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    """Refused while any order line points at the product; its samples are removed."""
    product = get_product(db, product_id)
    in_orders = db.query(OrderItem.id).filter(OrderItem.product_id == product.id).first()
    if in_orders is not None:
        raise BadRequestError(f"Product with id {product_id} is referenced by existing orders and cannot be deleted")
    for sample in list(product.samples):
        db.delete(sample)
    db.delete(product)
    db.commit()
    logger.info("Deleted product %s", product_id)


def search_products(db: Session, name: str) -> List[Product]:
    return db.query(Product).filter(
        Product.name.ilike(f"%{name.strip()}%")
    ).order_by(Product.id).all()


def products_by_category(db: Session, category: str) -> List[Product]:
    return db.query(Product).filter(
        func.lower(Product.category) == category.strip().lower()
    ).order_by(Product.id).all()

# ==================== API ENDPOINTS ====================

@router.post("", response_model=ProductResponse)
def create_product_endpoint(request: ProductRequest, db: Session = Depends(get_db)):
    return product_to_dict(create_product(db, request))


@router.get("", response_model=List[ProductResponse])
def get_all_products(db: Session = Depends(get_db)):
    return [product_to_dict(p) for p in db.query(Product).order_by(Product.id).all()]


@router.get("/search", response_model=List[ProductResponse])
def search_products_endpoint(name: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return [product_to_dict(p) for p in search_products(db, name)]


@router.get("/category/{category}", response_model=List[ProductResponse])
def get_products_by_category(category: str, db: Session = Depends(get_db)):
    return [product_to_dict(p) for p in products_by_category(db, category)]


@router.get("/{product_id}", response_model=ProductResponse)
def get_product_by_id(product_id: int, db: Session = Depends(get_db)):
    return product_to_dict(get_product(db, product_id))


@router.put("/{product_id}", response_model=ProductResponse)
def update_product_endpoint(product_id: int, request: ProductRequest, db: Session = Depends(get_db)):
    return product_to_dict(update_product(db, product_id, request))


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product_endpoint(product_id: int, db: Session = Depends(get_db)):
    delete_product(db, product_id)
