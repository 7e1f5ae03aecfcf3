from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
from pydantic import field_validator
from typing import List, Optional
from datetime import datetime
import logging

from medtrack import config
from medtrack.database.connection import get_db
from medtrack.database.models import Location
from medtrack.exceptions import BadRequestError
from medtrack.api.common import (
    CamelModel, NonBlankStr, Timestamp, commit_or_bad_request, get_or_404,
)

router = APIRouter(prefix="/api/locations", tags=["Locations"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class LocationRequest(CamelModel):
    name: NonBlankStr
    city: NonBlankStr
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None


class BulkLocationRequest(CamelModel):
    locations: List[LocationRequest]

    @field_validator("locations")
    @classmethod
    def check_batch_size(cls, value):
        if not value:
            raise ValueError("At least one location is required")
        if len(value) > config.MAX_BULK_LOCATIONS:
            raise ValueError(f"Cannot add more than {config.MAX_BULK_LOCATIONS} locations at once")
        return value


class LocationResponse(CamelModel):
    id: int
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None

# ==================== HELPER FUNCTIONS ====================

def location_to_dict(location: Location) -> dict:
    return {
        "id": location.id,
        "name": location.name,
        "city": location.city,
        "state": location.state,
        "country": location.country,
        "address": location.address,
        "is_active": bool(location.is_active),
        "created_at": location.created_at,
        "updated_at": location.updated_at,
    }


def get_location(db: Session, location_id: int) -> Location:
    return get_or_404(db, Location, location_id, "Location")


def find_location_by_name(db: Session, name: str) -> Optional[Location]:
    """Case-insensitive lookup by name."""
    return db.query(Location).filter(func.lower(Location.name) == name.strip().lower()).first()


def ensure_location_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    existing = find_location_by_name(db, name)
    if existing is not None and existing.id != exclude_id:
        raise BadRequestError(f"Location with name '{name}' already exists")


def _new_location(request: LocationRequest) -> Location:
    return Location(
        name=request.name.strip(),
        city=request.city.strip(),
        state=request.state,
        country=request.country or config.DEFAULT_COUNTRY,
        address=request.address,
        is_active=True,
    )


def create_location(db: Session, request: LocationRequest) -> Location:
    ensure_location_name_free(db, request.name)
    location = _new_location(request)
    db.add(location)
    commit_or_bad_request(db, f"Location with name '{request.name}' already exists")
    db.refresh(location)
    return location


def create_bulk_locations(db: Session, requests: List[LocationRequest]) -> List[Location]:
    """All-or-nothing creation of up to MAX_BULK_LOCATIONS locations."""
    if not requests:
        raise BadRequestError("At least one location is required")
    if len(requests) > config.MAX_BULK_LOCATIONS:
        raise BadRequestError(f"Cannot add more than {config.MAX_BULK_LOCATIONS} locations at once")

    seen = set()
    for request in requests:
        key = request.name.strip().lower()
        if key in seen:
            raise BadRequestError(f"Duplicate location name in request: '{request.name}'")
        seen.add(key)
        ensure_location_name_free(db, request.name)

    locations = [_new_location(request) for request in requests]
    db.add_all(locations)
    commit_or_bad_request(db, "One or more locations already exist")
    for location in locations:
        db.refresh(location)
    return locations


def list_locations(db: Session, active_only: bool = False) -> List[Location]:
    query = db.query(Location)
    if active_only:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.id).all()


def locations_by_city(db: Session, city: str) -> List[Location]:
    return db.query(Location).filter(
        func.lower(Location.city) == city.strip().lower()
    ).order_by(Location.id).all()


def search_locations(db: Session, term: str, active_only: bool = False) -> List[Location]:
    """Substring match on name or city, case-insensitive."""
    pattern = f"%{term.strip()}%"
    query = db.query(Location).filter(
        or_(Location.name.ilike(pattern), Location.city.ilike(pattern))
    )
    if active_only:
        query = query.filter(Location.is_active.is_(True))
    return query.order_by(Location.id).all()


def update_location(db: Session, location_id: int, request: LocationRequest) -> Location:
    location = get_location(db, location_id)
    ensure_location_name_free(db, request.name, exclude_id=location.id)

    location.name = request.name.strip()
    location.city = request.city.strip()
    location.state = request.state
    location.country = request.country or config.DEFAULT_COUNTRY
    location.address = request.address
    location.updated_at = datetime.now()

    commit_or_bad_request(db, f"Location with name '{request.name}' already exists")
    db.refresh(location)
    return location


def set_location_active(db: Session, location_id: int, active: bool) -> Location:
    location = get_location(db, location_id)
    location.is_active = active
    location.updated_at = datetime.now()
    db.commit()
    db.refresh(location)
    return location


def delete_location(db: Session, location_id: int) -> None:
    """Visits keep their history with the location unset; assignments are dropped."""
    location = get_location(db, location_id)
    for visit in list(location.visits):
        visit.location = None
    location.users.clear()
    db.delete(location)
    db.commit()
    logger.info("Deleted location %s", location_id)

# ==================== API ENDPOINTS ====================

@router.post("", response_model=LocationResponse)
def create_location_endpoint(request: LocationRequest, db: Session = Depends(get_db)):
    return location_to_dict(create_location(db, request))


@router.post("/bulk", response_model=List[LocationResponse])
def create_bulk_locations_endpoint(request: BulkLocationRequest, db: Session = Depends(get_db)):
    """Create up to 50 locations in one call"""
    return [location_to_dict(loc) for loc in create_bulk_locations(db, request.locations)]


@router.get("", response_model=List[LocationResponse])
def get_all_locations(
    active_only: bool = Query(False, alias="activeOnly"),
    db: Session = Depends(get_db)
):
    return [location_to_dict(loc) for loc in list_locations(db, active_only)]


@router.get("/search", response_model=List[LocationResponse])
def search_locations_endpoint(
    q: str = Query(..., min_length=1),
    active_only: bool = Query(False, alias="activeOnly"),
    db: Session = Depends(get_db)
):
    return [location_to_dict(loc) for loc in search_locations(db, q, active_only)]


@router.get("/city/{city}", response_model=List[LocationResponse])
def get_locations_by_city(city: str, db: Session = Depends(get_db)):
    return [location_to_dict(loc) for loc in locations_by_city(db, city)]


@router.get("/{location_id}", response_model=LocationResponse)
def get_location_by_id(location_id: int, db: Session = Depends(get_db)):
    return location_to_dict(get_location(db, location_id))


@router.put("/{location_id}", response_model=LocationResponse)
def update_location_endpoint(location_id: int, request: LocationRequest, db: Session = Depends(get_db)):
    return location_to_dict(update_location(db, location_id, request))


@router.put("/{location_id}/activate", response_model=LocationResponse)
def activate_location(location_id: int, db: Session = Depends(get_db)):
    return location_to_dict(set_location_active(db, location_id, True))


@router.put("/{location_id}/deactivate", response_model=LocationResponse)
def deactivate_location(location_id: int, db: Session = Depends(get_db)):
    return location_to_dict(set_location_active(db, location_id, False))


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_location_endpoint(location_id: int, db: Session = Depends(get_db)):
    delete_location(db, location_id)
