"""
Shared building blocks for the routers: the camelCase base model, money and
timestamp field types, and small lookup / validation helpers.
"""
import re
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Optional, Type

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from medtrack.exceptions import BadRequestError, NotFoundError

CENT = Decimal("0.01")


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case accepted on input."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _money_to_json(value: Optional[Decimal]):
    if value is None:
        return None
    return float(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def _timestamp_to_json(value: Optional[datetime]):
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.astimezone()
    return value.isoformat()


# JSON number with two decimals; Decimal everywhere else
Money = Annotated[Decimal, PlainSerializer(_money_to_json, when_used="json")]
# ISO-8601 with the server's UTC offset
Timestamp = Annotated[datetime, PlainSerializer(_timestamp_to_json, when_used="json")]


# ==================== HELPER FUNCTIONS ====================

def today() -> date:
    return date.today()


def now() -> datetime:
    return datetime.now()


def to_money(value) -> Decimal:
    return Decimal(str(value if value is not None else 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def naive_local(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored naive in server-local time."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def ensure_not_future(value: date, label: str) -> None:
    if value > today():
        raise BadRequestError(f"{label} cannot be in the future")


def ensure_date_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise BadRequestError("Start date cannot be after end date")


def get_or_404(db: Session, model: Type, entity_id: int, label: str):
    instance = db.get(model, entity_id)
    if instance is None:
        raise NotFoundError(f"{label} not found with id: {entity_id}")
    return instance


def ensure_exists(db: Session, model: Type, entity_id: int, label: str) -> None:
    exists = db.query(model.id).filter(model.id == entity_id).first()
    if exists is None:
        raise NotFoundError(f"{label} not found with id: {entity_id}")


def commit_or_bad_request(db: Session, message: str) -> None:
    """Commit; a uniqueness violation raced past our checks becomes a 400."""
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise BadRequestError(message)


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+$")


def check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Email should be valid")
    return value


def check_not_blank(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.strip():
        raise ValueError("must not be blank")
    return value


Email = Annotated[str, AfterValidator(check_email)]
NonBlankStr = Annotated[str, AfterValidator(check_not_blank)]
