from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from medtrack.database.connection import get_db
from medtrack.database.models import UserRole
from medtrack.exceptions import UnauthorizedError
from medtrack.security import Principal, create_access_token, verify_password
from medtrack.api.access_control import get_current_principal
from medtrack.api.common import CamelModel, NonBlankStr
from medtrack.api.users import (
    UserCreateRequest, UserResponse, create_user, find_user_by_email, get_user, user_to_dict,
)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)

# ==================== PYDANTIC MODELS ====================

class LoginRequest(CamelModel):
    email: NonBlankStr
    password: NonBlankStr


class LoginResponse(CamelModel):
    token: str
    role: UserRole
    name: str
    email: str

# ==================== API ENDPOINTS ====================

@router.post("/login", response_model=LoginResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """
    Exchange email and password for a bearer token.

    Unknown email and wrong password give the same answer.
    """
    user = find_user_by_email(db, request.email)
    if user is None or not verify_password(request.password, user.password_hash):
        logger.info("Failed login for %s", request.email)
        raise UnauthorizedError("Invalid email or password")

    if not user.is_active:
        logger.info("Login refused for deactivated account %s", request.email)
        raise UnauthorizedError("Account is deactivated")

    token = create_access_token(user.id, user.role)
    logger.info("User %s logged in", user.email)
    return {
        "token": token,
        "role": user.role,
        "name": user.name,
        "email": user.email,
    }


@router.post("/register", response_model=UserResponse)
def register(request: UserCreateRequest, db: Session = Depends(get_db)):
    """
    Open registration. Every account created here is an ADMIN,
    whatever role the body asks for.
    """
    user = create_user(db, request, force_role=UserRole.ADMIN)
    logger.warning("Registered ADMIN account %s through public registration", user.email)
    return user_to_dict(user)


@router.get("/me", response_model=UserResponse)
def get_me(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    return user_to_dict(get_user(db, principal.user_id))
