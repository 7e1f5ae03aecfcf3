"""
Visit engine.

A visit is either entered after the fact (``POST /api/visits``, COMPLETED by
default) or started live (``POST /api/visits/start``) and later ended.
At most one visit per user may be IN_PROGRESS; the application checks it and
the partial unique index ``uq_visits_one_active_per_user`` backs the check
up when two starts race.
"""
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
from datetime import date, datetime
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import Visit, VisitStatus, UserRole, User
from medtrack.exceptions import BadRequestError, NotFoundError
from medtrack.security import Principal
from medtrack.api.access_control import get_current_principal, ensure_self_or_roles
from medtrack.api.common import (
    CamelModel, Timestamp, ensure_date_range, ensure_exists, ensure_not_future,
    naive_local, now, today,
)
from medtrack.api.users import get_user, user_has_location
from medtrack.api.doctors import DoctorResponse, get_doctor, doctor_to_dict
from medtrack.api.locations import LocationResponse, get_location, location_to_dict

router = APIRouter(prefix="/api/visits", tags=["Visits"])
logger = logging.getLogger(__name__)

ACTIVE_VISIT_MESSAGE = "User already has an active visit. Please complete it before starting a new one."

# ==================== PYDANTIC MODELS ====================

class VisitRequest(CamelModel):
    user_id: Optional[int] = None
    doctor_id: Optional[int] = None
    location_id: Optional[int] = None
    visit_date: Optional[date] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    status: Optional[VisitStatus] = None
    notes: Optional[str] = None


class StartVisitRequest(CamelModel):
    user_id: Optional[int] = None
    location_id: int
    doctor_id: int
    notes: Optional[str] = None


class EndVisitRequest(CamelModel):
    notes: Optional[str] = None


class VisitUserSummary(CamelModel):
    id: int
    name: str
    email: str
    role: UserRole


class VisitResponse(CamelModel):
    id: int
    user_id: int
    user_name: Optional[str] = None
    doctor_id: int
    doctor_name: Optional[str] = None
    location_id: Optional[int] = None
    location_name: Optional[str] = None
    visit_date: date
    check_in_time: Optional[Timestamp] = None
    check_out_time: Optional[Timestamp] = None
    status: VisitStatus
    notes: Optional[str] = None
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None
    user: Optional[VisitUserSummary] = None
    doctor: Optional[DoctorResponse] = None
    location: Optional[LocationResponse] = None

# ==================== HELPER FUNCTIONS ====================

def visit_to_dict(visit: Visit) -> dict:
    user, doctor, location = visit.user, visit.doctor, visit.location
    return {
        "id": visit.id,
        "user_id": visit.user_id,
        "user_name": user.name if user else None,
        "doctor_id": visit.doctor_id,
        "doctor_name": doctor.name if doctor else None,
        "location_id": visit.location_id,
        "location_name": location.name if location else None,
        "visit_date": visit.visit_date,
        "check_in_time": visit.check_in_time,
        "check_out_time": visit.check_out_time,
        "status": visit.status,
        "notes": visit.notes,
        "created_at": visit.created_at,
        "updated_at": visit.updated_at,
        "user": {"id": user.id, "name": user.name, "email": user.email, "role": user.role} if user else None,
        "doctor": doctor_to_dict(doctor) if doctor else None,
        "location": location_to_dict(location) if location else None,
    }


def visit_query(db: Session):
    """Visits with user, doctor and location loaded in the same round trip."""
    return db.query(Visit).options(
        joinedload(Visit.user),
        joinedload(Visit.doctor),
        joinedload(Visit.location),
    )


def _ordered(query) -> List[Visit]:
    return query.order_by(Visit.visit_date.desc(), Visit.id.desc()).all()


def get_visit(db: Session, visit_id: int) -> Visit:
    visit = visit_query(db).filter(Visit.id == visit_id).first()
    if visit is None:
        raise NotFoundError(f"Visit not found with id: {visit_id}")
    return visit


def scoped_user_id(principal: Principal) -> Optional[int]:
    """REPs only ever see their own visits."""
    return principal.user_id if principal.role == UserRole.REP else None


def ensure_visit_access(principal: Principal, visit: Visit) -> None:
    ensure_self_or_roles(principal, visit.user_id, UserRole.MANAGER, UserRole.ADMIN)


def ensure_location_assigned(user: User, location_id: int) -> None:
    if not user_has_location(user, location_id):
        raise BadRequestError(f"User does not have access to location with id: {location_id}")


def ensure_no_active_visit(db: Session, user_id: int, exclude_id: Optional[int] = None) -> None:
    query = db.query(Visit.id).filter(
        Visit.user_id == user_id,
        Visit.status == VisitStatus.IN_PROGRESS,
    )
    if exclude_id is not None:
        query = query.filter(Visit.id != exclude_id)
    if query.first() is not None:
        raise BadRequestError(ACTIVE_VISIT_MESSAGE)


def ensure_check_times(check_in_time: Optional[datetime], check_out_time: Optional[datetime]) -> None:
    if check_in_time is not None and check_out_time is not None and check_out_time < check_in_time:
        raise BadRequestError("Check-out time cannot be before check-in time")


def _commit_visit(db: Session) -> None:
    # the only unique index on visits is the single-active-visit one
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise BadRequestError(ACTIVE_VISIT_MESSAGE)


def create_visit(db: Session, request: VisitRequest) -> Visit:
    """Historical entry; status defaults to COMPLETED."""
    if request.user_id is None:
        raise BadRequestError("User id is required")
    if request.doctor_id is None:
        raise BadRequestError("Doctor id is required")
    if request.visit_date is None:
        raise BadRequestError("Visit date is required")

    user = get_user(db, request.user_id)
    doctor = get_doctor(db, request.doctor_id)
    location = None
    if request.location_id is not None:
        location = get_location(db, request.location_id)
        ensure_location_assigned(user, location.id)

    ensure_not_future(request.visit_date, "Visit date")

    visit_status = request.status or VisitStatus.COMPLETED
    check_in_time = naive_local(request.check_in_time)
    check_out_time = naive_local(request.check_out_time)

    if visit_status == VisitStatus.IN_PROGRESS:
        ensure_no_active_visit(db, user.id)
        if check_out_time is not None:
            raise BadRequestError("A visit in progress cannot have a check-out time")
        check_in_time = check_in_time or now()
    ensure_check_times(check_in_time, check_out_time)

    visit = Visit(
        user=user,
        doctor=doctor,
        location=location,
        visit_date=request.visit_date,
        check_in_time=check_in_time,
        check_out_time=check_out_time,
        status=visit_status,
        notes=request.notes,
    )
    db.add(visit)
    _commit_visit(db)
    return get_visit(db, visit.id)


def start_visit(db: Session, user_id: int, location_id: int, doctor_id: int, notes: Optional[str] = None) -> Visit:
    user = get_user(db, user_id)
    location = get_location(db, location_id)
    ensure_location_assigned(user, location.id)
    doctor = get_doctor(db, doctor_id)
    ensure_no_active_visit(db, user.id)

    visit = Visit(
        user=user,
        doctor=doctor,
        location=location,
        visit_date=today(),
        check_in_time=now(),
        status=VisitStatus.IN_PROGRESS,
        notes=notes,
    )
    db.add(visit)
    _commit_visit(db)
    logger.info("User %s started visit %s with doctor %s", user.id, visit.id, doctor.id)
    return get_visit(db, visit.id)


def end_visit(db: Session, visit_id: int, notes: Optional[str] = None) -> Visit:
    visit = get_visit(db, visit_id)
    if visit.status != VisitStatus.IN_PROGRESS:
        raise BadRequestError(f"Visit is not in progress. Current status: {visit.status.value}")

    visit.check_out_time = max(now(), visit.check_in_time) if visit.check_in_time else now()
    visit.status = VisitStatus.COMPLETED
    if notes:
        visit.notes = f"{visit.notes}\n{notes}" if visit.notes else notes

    db.commit()
    logger.info("Visit %s ended", visit.id)
    return get_visit(db, visit.id)


def update_visit(db: Session, visit_id: int, request: VisitRequest) -> Visit:
    """
    Partial update. A changed location is checked for existence only,
    not against the user's assigned set.
    """
    visit = get_visit(db, visit_id)
    previous_status = visit.status

    if request.user_id is not None and request.user_id != visit.user_id:
        visit.user = get_user(db, request.user_id)

    if request.doctor_id is not None and request.doctor_id != visit.doctor_id:
        linked = [s for s in visit.samples if s.doctor_id != request.doctor_id]
        linked += [o for o in visit.orders if o.doctor_id != request.doctor_id]
        if linked:
            raise BadRequestError("Visit has samples or orders recorded for its current doctor")
        visit.doctor = get_doctor(db, request.doctor_id)

    if request.location_id is not None:
        visit.location = get_location(db, request.location_id)

    if request.visit_date is not None:
        ensure_not_future(request.visit_date, "Visit date")
        visit.visit_date = request.visit_date

    if request.check_in_time is not None:
        visit.check_in_time = naive_local(request.check_in_time)
    if request.check_out_time is not None:
        visit.check_out_time = naive_local(request.check_out_time)
    if request.status is not None:
        visit.status = request.status
    if request.notes is not None:
        visit.notes = request.notes

    if visit.status == VisitStatus.IN_PROGRESS:
        ensure_no_active_visit(db, visit.user.id, exclude_id=visit.id)
        if visit.check_out_time is not None:
            raise BadRequestError("A visit in progress cannot have a check-out time")
        if visit.check_in_time is None:
            visit.check_in_time = now()
    elif previous_status == VisitStatus.IN_PROGRESS and visit.status == VisitStatus.COMPLETED:
        if visit.check_out_time is None:
            visit.check_out_time = now()
    ensure_check_times(visit.check_in_time, visit.check_out_time)

    visit.updated_at = datetime.now()
    _commit_visit(db)
    return get_visit(db, visit.id)


def delete_visit(db: Session, visit_id: int) -> None:
    """Samples and orders taken during the visit stay, unlinked."""
    visit = get_visit(db, visit_id)
    for sample in list(visit.samples):
        sample.visit = None
    for order in list(visit.orders):
        order.visit = None
    db.delete(visit)
    db.commit()


def find_visits(
    db: Session,
    user_id: Optional[int] = None,
    doctor_id: Optional[int] = None,
    location_id: Optional[int] = None,
    visit_status: Optional[VisitStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[Visit]:
    query = visit_query(db)
    if user_id is not None:
        query = query.filter(Visit.user_id == user_id)
    if doctor_id is not None:
        query = query.filter(Visit.doctor_id == doctor_id)
    if location_id is not None:
        query = query.filter(Visit.location_id == location_id)
    if visit_status is not None:
        query = query.filter(Visit.status == visit_status)
    if start_date is not None:
        query = query.filter(Visit.visit_date >= start_date)
    if end_date is not None:
        query = query.filter(Visit.visit_date <= end_date)
    return _ordered(query)


def _as_list(visits: List[Visit]) -> List[dict]:
    return [visit_to_dict(v) for v in visits]


def _own_user_id(principal: Principal, user_id: int) -> int:
    scoped = scoped_user_id(principal)
    return scoped if scoped is not None else user_id

# ==================== API ENDPOINTS ====================

@router.post("", response_model=VisitResponse)
def create_visit_endpoint(
    request: VisitRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    if request.user_id is not None:
        ensure_self_or_roles(principal, request.user_id, UserRole.MANAGER, UserRole.ADMIN)
    return visit_to_dict(create_visit(db, request))


@router.post("/start", response_model=VisitResponse)
def start_visit_endpoint(
    request: StartVisitRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    """Check in with a doctor at one of the user's locations"""
    user_id = request.user_id if request.user_id is not None else principal.user_id
    ensure_self_or_roles(principal, user_id, UserRole.MANAGER, UserRole.ADMIN)
    visit = start_visit(db, user_id, request.location_id, request.doctor_id, request.notes)
    return visit_to_dict(visit)


@router.put("/{visit_id}/end", response_model=VisitResponse)
def end_visit_endpoint(
    visit_id: int,
    request: Optional[EndVisitRequest] = Body(None),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    ensure_visit_access(principal, get_visit(db, visit_id))
    return visit_to_dict(end_visit(db, visit_id, request.notes if request else None))


@router.get("", response_model=List[VisitResponse])
def get_all_visits(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return _as_list(find_visits(db, user_id=scoped_user_id(principal)))


@router.get("/date-range", response_model=List[VisitResponse])
def get_visits_by_date_range(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    ensure_date_range(start_date, end_date)
    visits = find_visits(db, user_id=scoped_user_id(principal), start_date=start_date, end_date=end_date)
    return _as_list(visits)


@router.get("/date/{visit_date}", response_model=List[VisitResponse])
def get_visits_by_date(
    visit_date: date,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    visits = find_visits(db, user_id=scoped_user_id(principal), start_date=visit_date, end_date=visit_date)
    return _as_list(visits)


@router.get("/user/{user_id}", response_model=List[VisitResponse])
def get_visits_by_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    user_id = _own_user_id(principal, user_id)
    ensure_exists(db, User, user_id, "User")
    return _as_list(find_visits(db, user_id=user_id))


@router.get("/user/{user_id}/active", response_model=List[VisitResponse])
def get_active_visits_by_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    user_id = _own_user_id(principal, user_id)
    ensure_exists(db, User, user_id, "User")
    return _as_list(find_visits(db, user_id=user_id, visit_status=VisitStatus.IN_PROGRESS))


@router.get("/user/{user_id}/date-range", response_model=List[VisitResponse])
def get_visits_by_user_and_date_range(
    user_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    user_id = _own_user_id(principal, user_id)
    ensure_exists(db, User, user_id, "User")
    ensure_date_range(start_date, end_date)
    return _as_list(find_visits(db, user_id=user_id, start_date=start_date, end_date=end_date))


@router.get("/doctor/{doctor_id}", response_model=List[VisitResponse])
def get_visits_by_doctor(
    doctor_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    get_doctor(db, doctor_id)
    return _as_list(find_visits(db, user_id=scoped_user_id(principal), doctor_id=doctor_id))


@router.get("/doctor/{doctor_id}/date-range", response_model=List[VisitResponse])
def get_visits_by_doctor_and_date_range(
    doctor_id: int,
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    get_doctor(db, doctor_id)
    ensure_date_range(start_date, end_date)
    visits = find_visits(
        db,
        user_id=scoped_user_id(principal),
        doctor_id=doctor_id,
        start_date=start_date,
        end_date=end_date,
    )
    return _as_list(visits)


@router.get("/location/{location_id}", response_model=List[VisitResponse])
def get_visits_by_location(
    location_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    get_location(db, location_id)
    return _as_list(find_visits(db, user_id=scoped_user_id(principal), location_id=location_id))


@router.get("/{visit_id}", response_model=VisitResponse)
def get_visit_by_id(
    visit_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    visit = get_visit(db, visit_id)
    ensure_visit_access(principal, visit)
    return visit_to_dict(visit)


@router.put("/{visit_id}", response_model=VisitResponse)
def update_visit_endpoint(
    visit_id: int,
    request: VisitRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    ensure_visit_access(principal, get_visit(db, visit_id))
    if request.user_id is not None:
        ensure_self_or_roles(principal, request.user_id, UserRole.MANAGER, UserRole.ADMIN)
    return visit_to_dict(update_visit(db, visit_id, request))


@router.delete("/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_visit_endpoint(visit_id: int, db: Session = Depends(get_db)):
    delete_visit(db, visit_id)
