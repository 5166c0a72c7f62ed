"""
Split Service - how an expense's cost is shared between members

Rules:
- Pure functions, no db access
- All money is Decimal, rounded half-up to 2 places
- Every allocation returns an ordered list of {"user_id", "owe_amount"}
  whose amounts add up to the total
"""
from collections import namedtuple
from decimal import Decimal

from services.errors import InvalidSplitError, ValidationError
from utils.helpers import ZERO, round2, to_decimal

SPLIT_EQUAL = "equal"
SPLIT_CUSTOM = "custom"
SPLIT_MODES = (SPLIT_EQUAL, SPLIT_CUSTOM)

# custom splits may be off by this much before they're rejected
SPLIT_TOLERANCE = Decimal("0.1")
# auto-fill leaves drift smaller than this alone
AUTOFILL_EPSILON = Decimal("0.001")
# how close a stored split must be to total/n to count as an equal split
EQUAL_DETECT_TOLERANCE = Decimal("0.05")

ValidationResult = namedtuple(
    "ValidationResult", ["ok", "total", "allocated", "difference", "errors"]
)


def _check_members(members):
    members = list(members or [])
    if not members:
        raise ValidationError("At least one member is required to split an expense")
    if len(set(members)) != len(members):
        raise ValidationError("Each member can only appear once in a split")
    return members


def _check_total(total):
    try:
        total = to_decimal(total)
    except ValueError:
        # covers NaN and Infinity too
        raise ValidationError("Amount must be a number.")
    if total <= 0:
        raise ValidationError("Amount must be greater than 0.")
    return total


def _entry_value(value):
    # an emptied input box counts as 0
    if value is None or value == "":
        return ZERO
    try:
        return to_decimal(value)
    except ValueError:
        raise ValidationError(f"Split amount {value!r} is not a number")


def _as_list(members, amounts):
    return [{"user_id": m, "owe_amount": amounts[m]} for m in members]


def splits_to_map(splits):
    """Accept either a {user_id: amount} mapping or a list of split dicts."""
    if splits is None:
        return {}
    if isinstance(splits, dict):
        return {uid: _entry_value(amount) for uid, amount in splits.items()}
    return {s["user_id"]: _entry_value(s["owe_amount"]) for s in splits}


def allocate_equal(total, members):
    """
    Split `total` equally between `members`.

    Everyone gets round2(total / n); the rounding remainder goes to the first
    member so the shares add up to the total exactly. Same input, same output.
    """
    members = _check_members(members)
    total = _check_total(total)

    share = round2(total / len(members))
    amounts = {m: share for m in members}

    remainder = round2(total - share * len(members))
    if remainder:
        amounts[members[0]] += remainder

    return _as_list(members, amounts)


def _autofill(total, members, locked_amounts):
    amounts = dict(locked_amounts)
    unlocked = [m for m in members if m not in locked_amounts]
    if not unlocked:
        return amounts

    remaining = total - sum(locked_amounts.values(), ZERO)
    share = max(ZERO, round2(remaining / len(unlocked)))
    for m in unlocked:
        amounts[m] = share

    diff = total - sum(amounts.values(), ZERO)
    if abs(diff) > AUTOFILL_EPSILON:
        last = unlocked[-1]
        amounts[last] = round2(amounts[last] + diff)

    return amounts


def allocate_custom(total, members, manual_entries=None):
    """
    Custom ("smart") split.

    Members with a typed value in `manual_entries` are locked and keep it.
    The rest share what's left equally, never below zero, and the last
    unlocked member absorbs any rounding drift.
    """
    members = _check_members(members)
    total = _check_total(total)
    manual = splits_to_map(manual_entries)

    unknown = [uid for uid in manual if uid not in members]
    if unknown:
        raise ValidationError(f"Split given for non-member(s): {unknown}")

    amounts = _autofill(total, members, manual)
    return _as_list(members, amounts)


def recompute_on_lock(total, members, locked, edited_member, new_value, current_splits=None):
    """
    Live auto-fill after the user types `new_value` for `edited_member`.

    `locked` is the set of members whose values were typed before; their
    amounts come from `current_splits` and are not touched. Returns the new
    split list and the new locked set (which now includes `edited_member`).
    """
    members = _check_members(members)
    if edited_member not in members:
        raise ValidationError(f"{edited_member} is not part of this split")

    current = splits_to_map(current_splits)
    new_locked = set(locked or ()) | {edited_member}

    manual = {}
    for m in members:
        if m == edited_member:
            manual[m] = _entry_value(new_value)
        elif m in new_locked:
            if m not in current:
                raise ValidationError(f"No amount known for locked member {m}")
            manual[m] = current[m]

    splits = allocate_custom(total, members, manual)
    return splits, frozenset(new_locked)


def validate_splits(total, splits):
    """
    Check custom splits before they're saved: they must add up to the
    total (within 0.1) and none may be negative.
    """
    try:
        total = to_decimal(total)
    except ValueError:
        raise ValidationError("Amount must be a number.")
    amounts = splits_to_map(splits)
    allocated = sum(amounts.values(), ZERO)
    difference = allocated - total

    errors = []
    if not amounts:
        errors.append("At least one split is required.")
    if any(a < 0 for a in amounts.values()):
        errors.append("Split amounts cannot be negative.")
    if abs(difference) > SPLIT_TOLERANCE:
        errors.append(
            f"Split amounts must equal the total amount ({total:.2f}). "
            f"Current total: {allocated:.2f}"
        )

    return ValidationResult(not errors, total, allocated, difference, errors)


def ensure_valid_splits(total, splits):
    result = validate_splits(total, splits)
    if not result.ok:
        raise InvalidSplitError(result.errors[0], errors=result.errors)
    return result


def detect_split_mode(total, splits, members):
    """
    Guess how stored splits were made, so an edit form can reopen in the
    right mode: equal when every member has a share within 0.05 of total/n.
    """
    amounts = splits_to_map(splits)
    members = list(members or [])
    if not amounts or len(amounts) != len(members):
        return SPLIT_CUSTOM

    expected = to_decimal(total) / len(members)
    if all(abs(a - expected) < EQUAL_DETECT_TOLERANCE for a in amounts.values()):
        return SPLIT_EQUAL
    return SPLIT_CUSTOM
