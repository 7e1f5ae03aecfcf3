from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from pydantic import Field
from typing import List, Optional
from datetime import date, datetime
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import Sample, Product, Doctor, Visit
from medtrack.exceptions import BadRequestError, NotFoundError
from medtrack.api.common import (
    CamelModel, Timestamp, commit_or_bad_request, ensure_date_range, ensure_exists,
    ensure_not_future, get_or_404,
)
from medtrack.api.doctors import DoctorResponse, get_doctor, doctor_to_dict
from medtrack.api.products import ProductResponse, get_product, product_to_dict

router = APIRouter(prefix="/api/samples", tags=["Samples"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class SampleRequest(CamelModel):
    doctor_id: int
    product_id: int
    quantity: int = Field(..., ge=1)
    date_issued: date
    visit_id: Optional[int] = None


class SampleUpdateRequest(CamelModel):
    doctor_id: Optional[int] = None
    product_id: Optional[int] = None
    quantity: Optional[int] = Field(None, ge=1)
    date_issued: Optional[date] = None
    visit_id: Optional[int] = None


class SampleResponse(CamelModel):
    id: int
    doctor_id: int
    doctor_name: Optional[str] = None
    product_id: int
    product_name: Optional[str] = None
    quantity: int
    date_issued: date
    visit_id: Optional[int] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None
    doctor: Optional[DoctorResponse] = None
    product: Optional[ProductResponse] = None


class TopProductResponse(CamelModel):
    product_id: int
    product_name: str
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    total_samples: int

# ==================== HELPER FUNCTIONS ====================

def sample_to_dict(sample: Sample) -> dict:
    doctor, product = sample.doctor, sample.product
    return {
        "id": sample.id,
        "doctor_id": sample.doctor_id,
        "doctor_name": doctor.name if doctor else None,
        "product_id": sample.product_id,
        "product_name": product.name if product else None,
        "quantity": sample.quantity,
        "date_issued": sample.date_issued,
        "visit_id": sample.visit_id,
        "created_at": sample.created_at,
        "updated_at": sample.updated_at,
        "doctor": doctor_to_dict(doctor) if doctor else None,
        "product": product_to_dict(product) if product else None,
    }


def sample_query(db: Session):
    return db.query(Sample).options(joinedload(Sample.doctor), joinedload(Sample.product))


def get_sample(db: Session, sample_id: int) -> Sample:
    sample = sample_query(db).filter(Sample.id == sample_id).first()
    if sample is None:
        raise NotFoundError(f"Sample not found with id: {sample_id}")
    return sample


def _duplicate_message(doctor_id: int, product_id: int) -> str:
    return f"Sample with doctor id '{doctor_id}' and product id '{product_id}' already exists"


def find_sample_for_pair(db: Session, doctor_id: int, product_id: int) -> Optional[Sample]:
    return db.query(Sample).filter(
        Sample.doctor_id == doctor_id,
        Sample.product_id == product_id,
    ).first()


def resolve_visit_for_doctor(db: Session, visit_id: int, doctor_id: int) -> Visit:
    """A linked visit must be with the same doctor."""
    visit = get_or_404(db, Visit, visit_id, "Visit")
    if visit.doctor_id != doctor_id:
        raise BadRequestError("Visit does not belong to the specified doctor")
    return visit


def issue_sample(db: Session, request: SampleRequest) -> Sample:
    """One sample row per (doctor, product); more units are recorded by update."""
    if find_sample_for_pair(db, request.doctor_id, request.product_id) is not None:
        raise BadRequestError(_duplicate_message(request.doctor_id, request.product_id))

    doctor = get_doctor(db, request.doctor_id)
    product = get_product(db, request.product_id)
    visit = None
    if request.visit_id is not None:
        visit = resolve_visit_for_doctor(db, request.visit_id, doctor.id)

    ensure_not_future(request.date_issued, "Date issued")

    sample = Sample(
        doctor=doctor,
        product=product,
        visit=visit,
        quantity=request.quantity,
        date_issued=request.date_issued,
    )
    db.add(sample)
    commit_or_bad_request(db, _duplicate_message(request.doctor_id, request.product_id))
    return get_sample(db, sample.id)


def update_sample(db: Session, sample_id: int, request: SampleUpdateRequest) -> Sample:
    sample = get_sample(db, sample_id)

    doctor_id = request.doctor_id if request.doctor_id is not None else sample.doctor_id
    product_id = request.product_id if request.product_id is not None else sample.product_id
    if (doctor_id, product_id) != (sample.doctor_id, sample.product_id):
        other = find_sample_for_pair(db, doctor_id, product_id)
        if other is not None and other.id != sample.id:
            raise BadRequestError(_duplicate_message(doctor_id, product_id))

    if request.doctor_id is not None:
        sample.doctor = get_doctor(db, request.doctor_id)
    if request.product_id is not None:
        sample.product = get_product(db, request.product_id)

    if request.visit_id is not None:
        sample.visit = resolve_visit_for_doctor(db, request.visit_id, doctor_id)
    elif sample.visit is not None and sample.visit.doctor_id != doctor_id:
        raise BadRequestError("Visit does not belong to the specified doctor")

    if request.date_issued is not None:
        ensure_not_future(request.date_issued, "Date issued")
        sample.date_issued = request.date_issued
    if request.quantity is not None:
        sample.quantity = request.quantity

    sample.updated_at = datetime.now()
    commit_or_bad_request(db, _duplicate_message(doctor_id, product_id))
    return get_sample(db, sample.id)


def delete_sample(db: Session, sample_id: int) -> None:
    db.delete(get_or_404(db, Sample, sample_id, "Sample"))
    db.commit()


def find_samples(
    db: Session,
    doctor_id: Optional[int] = None,
    product_id: Optional[int] = None,
    visit_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Sample]:
    query = sample_query(db)
    if doctor_id is not None:
        query = query.filter(Sample.doctor_id == doctor_id)
    if product_id is not None:
        query = query.filter(Sample.product_id == product_id)
    if visit_id is not None:
        query = query.filter(Sample.visit_id == visit_id)
    if start_date is not None:
        query = query.filter(Sample.date_issued >= start_date)
    if end_date is not None:
        query = query.filter(Sample.date_issued <= end_date)
    return query.order_by(Sample.date_issued.desc(), Sample.id.desc()).all()


def total_quantity_for_product(db: Session, product_id: int) -> int:
    ensure_exists(db, Product, product_id, "Product")
    total = db.query(func.sum(Sample.quantity)).filter(Sample.product_id == product_id).scalar()
    return int(total or 0)


def total_quantity_for_doctor(db: Session, doctor_id: int) -> int:
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    total = db.query(func.sum(Sample.quantity)).filter(Sample.doctor_id == doctor_id).scalar()
    return int(total or 0)


def top_products_by_sample_quantity(db: Session, limit: int = 5) -> List[dict]:
    """Products ranked by total sampled quantity; ties go to the lower product id."""
    total = func.sum(Sample.quantity).label("total_samples")
    rows = db.query(
        Product.id,
        Product.name,
        Product.category,
        Product.manufacturer,
        total,
    ).join(Sample, Sample.product_id == Product.id).group_by(
        Product.id, Product.name, Product.category, Product.manufacturer
    ).order_by(total.desc(), Product.id.asc()).limit(limit).all()

    return [
        {
            "product_id": row.id,
            "product_name": row.name,
            "category": row.category,
            "manufacturer": row.manufacturer,
            "total_samples": int(row.total_samples or 0),
        }
        for row in rows
    ]


def _as_list(samples: List[Sample]) -> List[dict]:
    return [sample_to_dict(s) for s in samples]

# ==================== API ENDPOINTS ====================

@router.post("", response_model=SampleResponse)
def issue_sample_endpoint(request: SampleRequest, db: Session = Depends(get_db)):
    return sample_to_dict(issue_sample(db, request))


@router.get("", response_model=List[SampleResponse])
def get_all_samples(db: Session = Depends(get_db)):
    return _as_list(find_samples(db))


@router.get("/date-range", response_model=List[SampleResponse])
def get_samples_by_date_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    ensure_date_range(start_date, end_date)
    return _as_list(find_samples(db, start_date=start_date, end_date=end_date))


@router.get("/date/{date_issued}", response_model=List[SampleResponse])
def get_samples_by_date(date_issued: date, db: Session = Depends(get_db)):
    return _as_list(find_samples(db, start_date=date_issued, end_date=date_issued))


@router.get("/doctor/{doctor_id}", response_model=List[SampleResponse])
def get_samples_by_doctor(doctor_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    return _as_list(find_samples(db, doctor_id=doctor_id))


@router.get("/doctor/{doctor_id}/date-range", response_model=List[SampleResponse])
def get_samples_by_doctor_and_date_range(
    doctor_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    ensure_date_range(start_date, end_date)
    return _as_list(find_samples(db, doctor_id=doctor_id, start_date=start_date, end_date=end_date))


@router.get("/doctor/{doctor_id}/product/{product_id}", response_model=List[SampleResponse])
def get_samples_by_doctor_and_product(doctor_id: int, product_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Doctor, doctor_id, "Doctor")
    ensure_exists(db, Product, product_id, "Product")
    return _as_list(find_samples(db, doctor_id=doctor_id, product_id=product_id))


@router.get("/product/{product_id}", response_model=List[SampleResponse])
def get_samples_by_product(product_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Product, product_id, "Product")
    return _as_list(find_samples(db, product_id=product_id))


@router.get("/product/{product_id}/date-range", response_model=List[SampleResponse])
def get_samples_by_product_and_date_range(
    product_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    db: Session = Depends(get_db)
):
    ensure_exists(db, Product, product_id, "Product")
    ensure_date_range(start_date, end_date)
    return _as_list(find_samples(db, product_id=product_id, start_date=start_date, end_date=end_date))


@router.get("/visit/{visit_id}", response_model=List[SampleResponse])
def get_samples_by_visit(visit_id: int, db: Session = Depends(get_db)):
    ensure_exists(db, Visit, visit_id, "Visit")
    return _as_list(find_samples(db, visit_id=visit_id))


@router.get("/reports/product/{product_id}/total-quantity", response_model=int)
def get_total_quantity_by_product(product_id: int, db: Session = Depends(get_db)):
    return total_quantity_for_product(db, product_id)


@router.get("/reports/doctor/{doctor_id}/total-quantity", response_model=int)
def get_total_quantity_by_doctor(doctor_id: int, db: Session = Depends(get_db)):
    return total_quantity_for_doctor(db, doctor_id)


@router.get("/reports/top-products", response_model=List[TopProductResponse])
def get_top_sampled_products(limit: int = Query(5, ge=1), db: Session = Depends(get_db)):
    return top_products_by_sample_quantity(db, limit)


@router.get("/{sample_id}", response_model=SampleResponse)
def get_sample_by_id(sample_id: int, db: Session = Depends(get_db)):
    return sample_to_dict(get_sample(db, sample_id))


@router.put("/{sample_id}", response_model=SampleResponse)
def update_sample_endpoint(sample_id: int, request: SampleUpdateRequest, db: Session = Depends(get_db)):
    return sample_to_dict(update_sample(db, sample_id, request))


@router.delete("/{sample_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_sample_endpoint(sample_id: int, db: Session = Depends(get_db)):
    delete_sample(db, sample_id)
