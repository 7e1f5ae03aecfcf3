from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, joinedload
from sqlalchemy import func
from typing import List, Optional
from datetime import date, timedelta

from medtrack import config
from medtrack.database.connection import get_db
from medtrack.database.models import User, UserRole, Doctor, Product, Visit
from medtrack.api.common import CamelModel, today
from medtrack.api.samples import TopProductResponse, top_products_by_sample_quantity

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])

# ==================== PYDANTIC MODELS ====================

class RecentVisit(CamelModel):
    visit_id: int
    doctor_name: Optional[str] = None
    rep_name: Optional[str] = None
    visit_date: date
    purpose: str


class DashboardStats(CamelModel):
    total_users: int
    total_doctors: int
    total_products: int
    recent_visits_count: int
    active_reps_count: int
    top_products: List[TopProductResponse]
    recent_visits: List[RecentVisit]

# ==================== HELPER FUNCTIONS ====================

def notes_preview(notes: Optional[str]) -> str:
    if not notes:
        return "No notes"
    return notes[:config.NOTES_PREVIEW_CHARS] + "..."


def get_recent_visits(db: Session, as_of: date, limit: int = config.RECENT_VISITS_LIMIT) -> List[dict]:
    """Visits dated within the last week, newest first."""
    since = as_of - timedelta(days=config.RECENT_VISITS_DAYS)
    visits = db.query(Visit).options(
        joinedload(Visit.user),
        joinedload(Visit.doctor),
    ).filter(
        Visit.visit_date >= since,
        Visit.visit_date <= as_of,
    ).order_by(Visit.visit_date.desc(), Visit.id.desc()).limit(limit).all()

    return [
        {
            "visit_id": v.id,
            "doctor_name": v.doctor.name if v.doctor else None,
            "rep_name": v.user.name if v.user else None,
            "visit_date": v.visit_date,
            "purpose": notes_preview(v.notes),
        }
        for v in visits
    ]


def count_recent_visits(db: Session, as_of: date) -> int:
    since = as_of - timedelta(days=config.RECENT_VISITS_DAYS)
    return db.query(func.count(Visit.id)).filter(
        Visit.visit_date >= since,
        Visit.visit_date <= as_of,
    ).scalar() or 0


def count_active_reps(db: Session, as_of: date) -> int:
    """Distinct REPs with at least one visit since the first of the month."""
    first_of_month = as_of.replace(day=1)
    return db.query(func.count(func.distinct(Visit.user_id))).join(
        User, User.id == Visit.user_id
    ).filter(
        User.role == UserRole.REP,
        Visit.visit_date >= first_of_month,
        Visit.visit_date <= as_of,
    ).scalar() or 0

# ==================== API ENDPOINTS ====================

@router.get("/admin/stats", response_model=DashboardStats)
def get_admin_stats(db: Session = Depends(get_db)):
    """
    Admin dashboard.

    Head counts, the last week's visits and the most sampled products.
    """
    as_of = today()
    return {
        "total_users": db.query(func.count(User.id)).scalar() or 0,
        "total_doctors": db.query(func.count(Doctor.id)).scalar() or 0,
        "total_products": db.query(func.count(Product.id)).scalar() or 0,
        "recent_visits_count": count_recent_visits(db, as_of),
        "active_reps_count": count_active_reps(db, as_of),
        "top_products": top_products_by_sample_quantity(db, config.DASHBOARD_TOP_PRODUCTS),
        "recent_visits": get_recent_visits(db, as_of),
    }
