"""
General helper functions (non-domain specific utilities)

Note: Domain-specific business logic should be in services/
"""
import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy.exc import SQLAlchemyError

from models import db
from services.errors import PersistenceError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value):
    """
    Convert an amount coming from a form, JSON body or DB row to Decimal.

    Floats go through str() so 0.1 stays 0.1 instead of its binary expansion.
    Raises ValueError for anything that isn't a finite number (NaN and
    Infinity included).
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f"Not a number: {value!r}")
    if isinstance(value, Decimal):
        number = value
    else:
        try:
            if isinstance(value, float):
                number = Decimal(str(value))
            else:
                number = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Not a number: {value!r}")
    if not number.is_finite():
        raise ValueError(f"Not a number: {value!r}")
    return number


def round2(value):
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(value):
    return f"{round2(value):.2f}"


@contextmanager
def atomic(what):
    """
    Run a multi-step write as one unit: commit at the end, roll everything
    back if any step fails.

    Database failures come out as PersistenceError; anything else (a
    validation error halfway through) is re-raised as is.
    """
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as e:
        rollback_quietly(what)
        raise PersistenceError(f"Could not {what}.") from e
    except Exception:
        rollback_quietly(what)
        raise


def rollback_quietly(what):
    # a failing rollback must not hide the error that caused it
    try:
        db.session.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed while trying to %s", what)


def parse_id(value, name="id"):
    """Int id from a JSON body or query string; ValidationError if it isn't one."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def parse_id_list(values, name="members"):
    if values is None:
        return None
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{name} must be a list of ids")
    return [parse_id(v, name) for v in values]


def parse_amount_map(values, name="splits"):
    """{"3": "12.50"} from JSON -> {3: "12.50"}; amounts are checked later."""
    if values is None:
        return None
    if not isinstance(values, dict):
        raise ValidationError(f"{name} must map member ids to amounts")
    return {parse_id(k, name): v for k, v in values.items()}


def parse_flag(value):
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")
