from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlalchemy import func
from typing import List, Optional
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import Doctor
from medtrack.exceptions import BadRequestError
from medtrack.api.common import (
    CamelModel, NonBlankStr, Timestamp, commit_or_bad_request, get_or_404,
)

router = APIRouter(prefix="/api/doctors", tags=["Doctors"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class DoctorRequest(CamelModel):
    name: NonBlankStr
    specialty: Optional[str] = None
    hospital: Optional[str] = None
    phone: Optional[str] = None


class DoctorResponse(CamelModel):
    id: int
    name: str
    specialty: Optional[str] = None
    hospital: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[Timestamp] = None

# ==================== HELPER FUNCTIONS ====================

def doctor_to_dict(doctor: Doctor) -> dict:
    return {
        "id": doctor.id,
        "name": doctor.name,
        "specialty": doctor.specialty,
        "hospital": doctor.hospital,
        "phone": doctor.phone,
        "created_at": doctor.created_at,
    }


def get_doctor(db: Session, doctor_id: int) -> Doctor:
    return get_or_404(db, Doctor, doctor_id, "Doctor")


def _duplicate_message(name: str, hospital: Optional[str]) -> str:
    return f"Doctor with name '{name}' and hospital '{hospital}' already exists"


def ensure_doctor_unique(db: Session, name: str, hospital: Optional[str], exclude_id: Optional[int] = None) -> None:
    """(name, hospital) identifies a doctor; a missing hospital is its own value."""
    query = db.query(Doctor).filter(Doctor.name == name)
    if hospital is None:
        query = query.filter(Doctor.hospital.is_(None))
    else:
        query = query.filter(Doctor.hospital == hospital)
    existing = query.first()
    if existing is not None and existing.id != exclude_id:
        raise BadRequestError(_duplicate_message(name, hospital))


def create_doctor(db: Session, request: DoctorRequest) -> Doctor:
    name = request.name.strip()
    ensure_doctor_unique(db, name, request.hospital)
    doctor = Doctor(
        name=name,
        specialty=request.specialty,
        hospital=request.hospital,
        phone=request.phone,
    )
    db.add(doctor)
    commit_or_bad_request(db, _duplicate_message(name, request.hospital))
    db.refresh(doctor)
    return doctor


def update_doctor(db: Session, doctor_id: int, request: DoctorRequest) -> Doctor:
    doctor = get_doctor(db, doctor_id)
    name = request.name.strip()
    ensure_doctor_unique(db, name, request.hospital, exclude_id=doctor.id)

    doctor.name = name
    doctor.specialty = request.specialty
    doctor.hospital = request.hospital
    doctor.phone = request.phone

    commit_or_bad_request(db, _duplicate_message(name, request.hospital))
    db.refresh(doctor)
    return doctor


def delete_doctor(db: Session, doctor_id: int) -> None:
    """Destructive: the doctor's samples, orders and visits go with it."""
    doctor = get_doctor(db, doctor_id)
    for sample in list(doctor.samples):
        db.delete(sample)
    for order in list(doctor.orders):
        db.delete(order)
    db.flush()
    for visit in list(doctor.visits):
        for sample in list(visit.samples):
            sample.visit = None
        for order in list(visit.orders):
            order.visit = None
        db.delete(visit)
    db.delete(doctor)
    db.commit()
    logger.info("Deleted doctor %s", doctor_id)


def search_doctors(db: Session, name: str) -> List[Doctor]:
    return db.query(Doctor).filter(
        Doctor.name.ilike(f"%{name.strip()}%")
    ).order_by(Doctor.id).all()


def doctors_by_specialty(db: Session, specialty: str) -> List[Doctor]:
    return db.query(Doctor).filter(
        func.lower(Doctor.specialty) == specialty.strip().lower()
    ).order_by(Doctor.id).all()


def doctors_by_hospital(db: Session, hospital: str) -> List[Doctor]:
    return db.query(Doctor).filter(
        func.lower(Doctor.hospital) == hospital.strip().lower()
    ).order_by(Doctor.id).all()

# ==================== API ENDPOINTS ====================

@router.post("", response_model=DoctorResponse)
def create_doctor_endpoint(request: DoctorRequest, db: Session = Depends(get_db)):
    return doctor_to_dict(create_doctor(db, request))


@router.get("", response_model=List[DoctorResponse])
def get_all_doctors(db: Session = Depends(get_db)):
    return [doctor_to_dict(d) for d in db.query(Doctor).order_by(Doctor.id).all()]


@router.get("/search", response_model=List[DoctorResponse])
def search_doctors_endpoint(name: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    return [doctor_to_dict(d) for d in search_doctors(db, name)]


@router.get("/specialty/{specialty}", response_model=List[DoctorResponse])
def get_doctors_by_specialty(specialty: str, db: Session = Depends(get_db)):
    return [doctor_to_dict(d) for d in doctors_by_specialty(db, specialty)]


@router.get("/hospital/{hospital}", response_model=List[DoctorResponse])
def get_doctors_by_hospital(hospital: str, db: Session = Depends(get_db)):
    return [doctor_to_dict(d) for d in doctors_by_hospital(db, hospital)]


@router.get("/{doctor_id}", response_model=DoctorResponse)
def get_doctor_by_id(doctor_id: int, db: Session = Depends(get_db)):
    return doctor_to_dict(get_doctor(db, doctor_id))


@router.put("/{doctor_id}", response_model=DoctorResponse)
def update_doctor_endpoint(doctor_id: int, request: DoctorRequest, db: Session = Depends(get_db)):
    return doctor_to_dict(update_doctor(db, doctor_id, request))


@router.delete("/{doctor_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor_endpoint(doctor_id: int, db: Session = Depends(get_db)):
    delete_doctor(db, doctor_id)
