from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import User, UserRole, Location
from medtrack.exceptions import BadRequestError
from medtrack.security import hash_password
from medtrack.api.common import (
    CamelModel, Email, NonBlankStr, Timestamp, commit_or_bad_request, get_or_404,
)
from medtrack.api.locations import LocationResponse, get_location, location_to_dict

router = APIRouter(prefix="/api/users", tags=["Users"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class UserCreateRequest(CamelModel):
    name: NonBlankStr
    email: Email
    password: NonBlankStr
    role: Optional[UserRole] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None
    location_ids: Optional[List[int]] = None


class UserUpdateRequest(CamelModel):
    name: Optional[NonBlankStr] = None
    email: Optional[Email] = None
    password: Optional[str] = None
    role: Optional[UserRole] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None
    location_ids: Optional[List[int]] = None


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    role: UserRole
    phone: Optional[str] = None
    is_active: bool
    created_at: Optional[Timestamp] = None
    updated_at: Optional[Timestamp] = None
    location_ids: List[int] = []
    locations: List[LocationResponse] = []

# ==================== HELPER FUNCTIONS ====================

def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "phone": user.phone,
        "is_active": bool(user.is_active),
        "created_at": user.created_at,
        "updated_at": user.updated_at,
        "location_ids": [loc.id for loc in user.locations],
        "locations": [location_to_dict(loc) for loc in user.locations],
    }


def get_user(db: Session, user_id: int) -> User:
    return get_or_404(db, User, user_id, "User")


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email.strip()).first()


def resolve_locations(db: Session, location_ids: List[int]) -> List[Location]:
    """Load every id, failing on the first unknown one. Duplicates collapse."""
    locations = []
    seen = set()
    for location_id in location_ids:
        if location_id in seen:
            continue
        seen.add(location_id)
        locations.append(get_location(db, location_id))
    return locations


def create_user(db: Session, request: UserCreateRequest, force_role: Optional[UserRole] = None) -> User:
    email = request.email.strip()
    if find_user_by_email(db, email) is not None:
        raise BadRequestError(f"Email already exists: {email}")

    user = User(
        name=request.name.strip(),
        email=email,
        password_hash=hash_password(request.password),
        role=force_role or request.role or UserRole.REP,
        phone=request.phone,
        is_active=True if request.is_active is None else request.is_active,
    )
    if request.location_ids:
        user.locations = resolve_locations(db, request.location_ids)

    db.add(user)
    commit_or_bad_request(db, f"Email already exists: {email}")
    db.refresh(user)
    logger.info("Created user %s with role %s", user.id, user.role.value)
    return user


def update_user(db: Session, user_id: int, request: UserUpdateRequest) -> User:
    """Partial update; a location id list, when present, replaces the assignment set."""
    user = get_user(db, user_id)

    if request.email is not None and request.email.strip() != user.email:
        existing = find_user_by_email(db, request.email)
        if existing is not None and existing.id != user.id:
            raise BadRequestError(f"Email already exists: {request.email.strip()}")
        user.email = request.email.strip()

    if request.name is not None:
        user.name = request.name.strip()
    if request.password:
        user.password_hash = hash_password(request.password)
    if request.role is not None:
        user.role = request.role
    if request.phone is not None:
        user.phone = request.phone
    if request.is_active is not None:
        user.is_active = request.is_active
    if request.location_ids is not None:
        user.locations = resolve_locations(db, request.location_ids)

    user.updated_at = datetime.now()
    commit_or_bad_request(db, f"Email already exists: {user.email}")
    db.refresh(user)
    return user


def delete_user(db: Session, user_id: int) -> None:
    """Removes the user together with their visits and location assignments."""
    user = get_user(db, user_id)
    for visit in list(user.visits):
        for sample in list(visit.samples):
            sample.visit = None
        for order in list(visit.orders):
            order.visit = None
        db.delete(visit)
    user.locations.clear()
    db.delete(user)
    db.commit()
    logger.info("Deleted user %s", user_id)


def set_user_active(db: Session, user_id: int, active: bool) -> User:
    user = get_user(db, user_id)
    user.is_active = active
    user.updated_at = datetime.now()
    db.commit()
    db.refresh(user)
    return user


def assign_locations(db: Session, user_id: int, location_ids: List[int]) -> User:
    user = get_user(db, user_id)
    user.locations = resolve_locations(db, location_ids)
    user.updated_at = datetime.now()
    db.commit()
    db.refresh(user)
    return user


def add_location(db: Session, user_id: int, location_id: int) -> User:
    user = get_user(db, user_id)
    location = get_location(db, location_id)
    if location not in user.locations:
        user.locations.append(location)
        user.updated_at = datetime.now()
        db.commit()
        db.refresh(user)
    return user


def remove_location(db: Session, user_id: int, location_id: int) -> User:
    user = get_user(db, user_id)
    location = get_location(db, location_id)
    if location in user.locations:
        user.locations.remove(location)
        user.updated_at = datetime.now()
        db.commit()
        db.refresh(user)
    return user


def get_user_locations(db: Session, user_id: int) -> List[Location]:
    return list(get_user(db, user_id).locations)


def users_by_location(db: Session, location_id: int) -> List[User]:
    get_location(db, location_id)
    return db.query(User).join(User.locations).filter(
        Location.id == location_id
    ).order_by(User.id).all()


def user_has_location(user: User, location_id: int) -> bool:
    return any(loc.id == location_id for loc in user.locations)


def users_by_role(db: Session, role: UserRole) -> List[User]:
    return db.query(User).filter(User.role == role).order_by(User.id).all()

# ==================== API ENDPOINTS ====================

@router.post("", response_model=UserResponse)
def create_user_endpoint(request: UserCreateRequest, db: Session = Depends(get_db)):
    return user_to_dict(create_user(db, request))


@router.get("", response_model=List[UserResponse])
def get_all_users(db: Session = Depends(get_db)):
    return [user_to_dict(u) for u in db.query(User).order_by(User.id).all()]


@router.get("/role/{role}", response_model=List[UserResponse])
def get_users_by_role(role: str, db: Session = Depends(get_db)):
    try:
        user_role = UserRole(role.upper())
    except ValueError:
        raise BadRequestError(f"Invalid role: {role}")
    return [user_to_dict(u) for u in users_by_role(db, user_role)]


@router.get("/by-location/{location_id}", response_model=List[UserResponse])
def get_users_by_location(location_id: int, db: Session = Depends(get_db)):
    return [user_to_dict(u) for u in users_by_location(db, location_id)]


@router.get("/{user_id}", response_model=UserResponse)
def get_user_by_id(user_id: int, db: Session = Depends(get_db)):
    return user_to_dict(get_user(db, user_id))


@router.put("/{user_id}", response_model=UserResponse)
def update_user_endpoint(user_id: int, request: UserUpdateRequest, db: Session = Depends(get_db)):
    return user_to_dict(update_user(db, user_id, request))


@router.put("/{user_id}/activate", response_model=UserResponse)
def activate_user(user_id: int, db: Session = Depends(get_db)):
    return user_to_dict(set_user_active(db, user_id, True))


@router.put("/{user_id}/deactivate", response_model=UserResponse)
def deactivate_user(user_id: int, db: Session = Depends(get_db)):
    return user_to_dict(set_user_active(db, user_id, False))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user_endpoint(user_id: int, db: Session = Depends(get_db)):
    delete_user(db, user_id)


@router.get("/{user_id}/locations", response_model=List[LocationResponse])
def get_user_locations_endpoint(user_id: int, db: Session = Depends(get_db)):
    return [location_to_dict(loc) for loc in get_user_locations(db, user_id)]


@router.put("/{user_id}/locations", response_model=UserResponse)
def assign_locations_endpoint(user_id: int, location_ids: List[int] = Body(...), db: Session = Depends(get_db)):
    """Replace the user's assigned locations"""
    return user_to_dict(assign_locations(db, user_id, location_ids))


@router.post("/{user_id}/locations/{location_id}", response_model=UserResponse)
def add_location_endpoint(user_id: int, location_id: int, db: Session = Depends(get_db)):
    return user_to_dict(add_location(db, user_id, location_id))


@router.delete("/{user_id}/locations/{location_id}", response_model=UserResponse)
def remove_location_endpoint(user_id: int, location_id: int, db: Session = Depends(get_db)):
    return user_to_dict(remove_location(db, user_id, location_id))
