"""
Settlement Service - recording and confirming payments between members

A settlement is an Expense with category "settlement": the payer "paid" the
amount and the receiver owes all of it, which cancels out debt in the
ledger. Its lifecycle lives in the matching SettlementDetails row:

    pending_utr -> pending_confirmation -> confirmed
         \\______________\\_____________-> cancelled

A settlement expense without a details row is "legacy": it counts as
confirmed and can't be acted on.

The settlement id is the id of its expense.
"""
import logging
import re
from urllib.parse import quote, urlencode

from models import (
    db,
    Expense,
    ExpenseSplit,
    SettlementDetails,
    SettlementStatus,
    CATEGORY_SETTLEMENT,
    METHOD_MANUAL,
    METHOD_UPI,
    utcnow,
)
from services import ledger_service
from services.errors import (
    ConfirmedSettlementError,
    InvalidTransitionError,
    InvalidUtrError,
    MissingPayoutHandleError,
    OverSettlementError,
    PermissionError,
    SettlementNotFoundError,
    ValidationError,
)
from services.group_service import get_group_by_id, get_user_by_id, is_user_member
from utils.helpers import CENT, ZERO, atomic, money_str, to_decimal
from utils.validation import validate_amount, validate_name

logger = logging.getLogger(__name__)

PAYMENT_METHODS = (METHOD_MANUAL, METHOD_UPI)

UTR_PATTERN = re.compile(r"^\d{12,16}$")

CANCELLATION_REASON_MAX_LENGTH = 255


# --------------------------------------------------
# Lookups
# --------------------------------------------------

def get_settlement(settlement_id):
    """
    Get a settlement by ID.

    Raises:
        SettlementNotFoundError: If there is no settlement with this id
    """
    expense = db.session.get(Expense, settlement_id)
    if not expense or not expense.is_settlement:
        raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
    return expense


def get_group_settlements(group_id, statuses=None):
    """
    Get all settlements for a group, newest first.

    Args:
        group_id: Group ID
        statuses: Only settlements in these states (optional)
    """
    get_group_by_id(group_id)
    settlements = (
        Expense.query
        .filter_by(group_id=group_id, category=CATEGORY_SETTLEMENT)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .all()
    )
    if statuses:
        settlements = [s for s in settlements if s.settlement_status in statuses]
    return settlements


def _details(settlement):
    return settlement.settlement_details


def available_actions(settlement, user_id):
    """What `user_id` may do with this settlement right now."""
    status = settlement.settlement_status
    is_payer = settlement.paid_by == user_id
    is_receiver = settlement.receiver_id == user_id
    pending = status in SettlementStatus.PENDING

    return {
        "attach_utr": is_payer and status == SettlementStatus.PENDING_UTR,
        "confirm": is_receiver and status == SettlementStatus.PENDING_CONFIRMATION,
        "cancel": (is_payer or is_receiver) and pending,
        "edit": (is_payer or is_receiver) and pending,
        "delete": is_payer or is_receiver,
    }


def settlement_to_dict(settlement, viewer_id=None):
    details = _details(settlement)
    data = {
        "id": settlement.id,
        "group_id": settlement.group_id,
        "payer_id": settlement.paid_by,
        "receiver_id": settlement.receiver_id,
        "amount": money_str(settlement.amount),
        "description": settlement.description,
        "date": settlement.date.isoformat() if settlement.date else None,
        "status": settlement.settlement_status,
        "payment_method": details.payment_method if details else None,
        "utr_reference": details.utr_reference if details else None,
        "initiated_by": details.initiated_by if details else None,
        "confirmed_by": details.confirmed_by if details else None,
        "confirmed_at": details.confirmed_at.isoformat() if details and details.confirmed_at else None,
        "cancellation_reason": details.cancellation_reason if details else None,
    }
    if viewer_id is not None:
        data["actions"] = available_actions(settlement, viewer_id)
    return data


# --------------------------------------------------
# Guards
# --------------------------------------------------

def _require_party(settlement, actor_id, payer=True, receiver=True):
    allowed = []
    if payer:
        allowed.append(settlement.paid_by)
    if receiver:
        allowed.append(settlement.receiver_id)
    if actor_id not in allowed:
        logger.warning(
            "User %s refused on settlement %s (allowed: %s)", actor_id, settlement.id, allowed
        )
        raise PermissionError("You are not allowed to do this with this settlement")


def _require_status(settlement, *statuses):
    status = settlement.settlement_status
    if status not in statuses:
        raise InvalidTransitionError(
            f"Settlement {settlement.id} is {status}; this needs it to be "
            + " or ".join(statuses)
        )


def _clean_amount(amount):
    error = validate_amount(amount)
    if error:
        raise ValidationError(error)
    return to_decimal(amount)


def outstanding_debt(group_id, payer_id, receiver_id, exclude_settlement_id=None):
    """
    What payer still owes receiver, from every live expense and settlement
    in the group (cancelled settlements don't count).
    """
    expenses, splits = ledger_service.load_group_ledger(group_id)
    if exclude_settlement_id is not None:
        expenses = [e for e in expenses if e.id != exclude_settlement_id]
    matrix = ledger_service.compute_debt_matrix(expenses, splits)
    return ledger_service.net_debt(matrix, payer_id, receiver_id)


def _guard_debt(group_id, payer_id, receiver_id, amount, exclude_settlement_id=None):
    owed = outstanding_debt(group_id, payer_id, receiver_id, exclude_settlement_id)
    if amount > owed + CENT:
        logger.warning(
            "Settlement of %s from %s to %s refused in group %s: only %s owed",
            amount, payer_id, receiver_id, group_id, owed,
        )
        raise ValidationError(
            f"You can only settle up to {money_str(max(owed, ZERO))} with this member."
        )
    return owed


def _payment_description(receiver):
    return f"Payment to {receiver.name or 'Unknown'}"


# --------------------------------------------------
# Transitions
# --------------------------------------------------

def create_settlement(group_id, payer_id, receiver_id, amount, method=METHOD_MANUAL, actor_id=None):
    """
    Record a payment from payer to receiver.

    Manual settlements wait for the receiver to confirm; UPI settlements
    first wait for the payer's UTR. A member can't settle more than they
    owe that specific person.

    Returns:
        The settlement (an Expense with category "settlement")

    Raises:
        PermissionError: If actor is neither payer nor receiver, or either
            isn't in the group
        ValidationError: If data is invalid or exceeds the debt
        MissingPayoutHandleError: If UPI is chosen and receiver has no UPI ID
    """
    # permission check first
    if actor_id is None or actor_id not in (payer_id, receiver_id):
        raise PermissionError(
            "You can only record a settlement if you are the payer or the receiver."
        )

    if not all([group_id, payer_id, receiver_id]):
        raise ValidationError("group_id, payer_id and receiver_id are required")

    if payer_id == receiver_id:
        raise ValidationError("Payer and receiver cannot be the same")

    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method {method!r}")

    amount = _clean_amount(amount)

    get_group_by_id(group_id)
    if not is_user_member(group_id, payer_id) or not is_user_member(group_id, receiver_id):
        raise PermissionError("Payer and receiver must both be members of the group")

    receiver = get_user_by_id(receiver_id)
    if method == METHOD_UPI and not receiver.upi_id:
        raise MissingPayoutHandleError(
            f"{receiver.name or 'The receiver'} has not added a UPI ID. Settle manually instead."
        )

    _guard_debt(group_id, payer_id, receiver_id, amount)

    status = (
        SettlementStatus.PENDING_UTR if method == METHOD_UPI
        else SettlementStatus.PENDING_CONFIRMATION
    )

    with atomic("record the settlement") as session:
        settlement = Expense(
            group_id=group_id,
            paid_by=payer_id,
            amount=amount,
            description=_payment_description(receiver),
            category=CATEGORY_SETTLEMENT,
            created_by=actor_id,
        )
        settlement.splits.append(ExpenseSplit(user_id=receiver_id, owe_amount=amount))
        settlement.settlement_details = SettlementDetails(
            payment_method=method,
            settlement_status=status,
            initiated_by=payer_id,
        )
        session.add(settlement)

    logger.info(
        "Settlement %s created (%s): %s pays %s %s, status %s",
        settlement.id, method, payer_id, receiver_id, amount, status,
    )
    return settlement


def build_payment_intent(settlement, currency=None, note=None):
    """
    The upi://pay link a payment app opens to pay this settlement.

    Opening it is up to the caller.
    """
    receiver = get_user_by_id(settlement.receiver_id)
    if not receiver.upi_id:
        raise MissingPayoutHandleError(
            f"{receiver.name or 'The receiver'} has not added a UPI ID."
        )

    if currency is None:
        currency = get_group_by_id(settlement.group_id).currency

    params = {
        "pa": receiver.upi_id,
        "pn": receiver.name or "",
        "am": money_str(settlement.amount),
        "cu": currency,
        "tn": note or settlement.description or "Settlement",
    }
    return "upi://pay?" + urlencode(params, quote_via=quote, safe="@")


def attach_utr(settlement_id, actor_id, utr):
    """
    Payer adds the UTR of their UPI payment; the settlement then waits for
    the receiver's confirmation.

    Raises:
        PermissionError: If actor isn't the payer
        InvalidTransitionError: If the settlement isn't waiting for a UTR
        InvalidUtrError: If utr isn't 12-16 digits
    """
    settlement = get_settlement(settlement_id)
    _require_party(settlement, actor_id, receiver=False)
    _require_status(settlement, SettlementStatus.PENDING_UTR)

    utr = str(utr or "").strip()
    if not UTR_PATTERN.match(utr):
        raise InvalidUtrError("UTR must be 12 to 16 digits.")

    with atomic("save the UTR"):
        details = _details(settlement)
        details.utr_reference = utr
        details.settlement_status = SettlementStatus.PENDING_CONFIRMATION

    logger.info("UTR attached to settlement %s by %s", settlement.id, actor_id)
    return settlement


def check_over_settlement(settlement_id):
    """
    Dry run of the over-settlement check done on confirm.

    actual  - what the payer owes the receiver from regular expenses
    pending - every live settlement from payer to receiver (pending,
              confirmed or legacy), this one included

    The check reads without locking, so two confirms racing each other can
    both pass; it is a warning, not a guarantee.
    """
    settlement = get_settlement(settlement_id)
    payer_id = settlement.paid_by
    receiver_id = settlement.receiver_id

    expenses, splits = ledger_service.load_group_ledger(settlement.group_id)
    matrix = ledger_service.compute_debt_matrix(expenses, splits, include_settlements=False)
    actual = ledger_service.net_debt(matrix, payer_id, receiver_id)

    pending = sum(
        (
            to_decimal(e.amount) for e in expenses
            if e.is_settlement
            and e.paid_by == payer_id
            and e.receiver_id == receiver_id
            and e.settlement_status in SettlementStatus.LIVE
        ),
        ZERO,
    )

    return {
        "is_over": pending > actual + CENT,
        "actual": actual,
        "pending": pending,
        "excess": max(pending - actual, ZERO),
    }


def confirm_settlement(settlement_id, actor_id, override=False):
    """
    Receiver confirms they got the money.

    If the payer's settlements to the receiver would add up to more than
    the actual debt, OverSettlementError is raised unless `override` is set.

    Raises:
        PermissionError: If actor isn't the receiver
        InvalidTransitionError: If the settlement isn't pending confirmation
        OverSettlementError: If it over-settles and override is False
    """
    settlement = get_settlement(settlement_id)
    _require_party(settlement, actor_id, payer=False)
    _require_status(settlement, SettlementStatus.PENDING_CONFIRMATION)

    check = check_over_settlement(settlement_id)
    if check["is_over"]:
        if not override:
            logger.warning(
                "Confirming settlement %s would over-settle: actual %s, pending %s",
                settlement.id, check["actual"], check["pending"],
            )
            raise OverSettlementError(check["actual"], check["pending"])
        logger.warning(
            "Settlement %s confirmed by %s despite over-settling by %s",
            settlement.id, actor_id, check["excess"],
        )

    with atomic("confirm the settlement"):
        details = _details(settlement)
        details.settlement_status = SettlementStatus.CONFIRMED
        details.confirmed_by = actor_id
        details.confirmed_at = utcnow()

    logger.info("Settlement %s confirmed by %s", settlement.id, actor_id)
    return settlement


def cancel_settlement(settlement_id, actor_id, reason):
    """
    Payer or receiver calls off a pending settlement.

    Only the status changes; the expense and split stay for the record and
    the ledger skips cancelled settlements.

    Raises:
        PermissionError: If actor is neither payer nor receiver
        InvalidTransitionError: If the settlement isn't pending
        ValidationError: If reason is empty
    """
    settlement = get_settlement(settlement_id)
    _require_party(settlement, actor_id)
    _require_status(settlement, *SettlementStatus.PENDING)

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to cancel a settlement.")
    if len(reason) > CANCELLATION_REASON_MAX_LENGTH:
        raise ValidationError(
            f"Reason cannot exceed {CANCELLATION_REASON_MAX_LENGTH} characters."
        )

    with atomic("cancel the settlement"):
        details = _details(settlement)
        details.settlement_status = SettlementStatus.CANCELLED
        details.cancellation_reason = reason

    logger.info("Settlement %s cancelled by %s: %s", settlement.id, actor_id, reason)
    return settlement


def edit_settlement(settlement_id, actor_id, amount=None, receiver_id=None, description=None):
    """
    Change amount, receiver or description of a pending settlement.

    Confirmed settlements are frozen. The status stays as it is and the
    split is replaced.

    Raises:
        PermissionError: If actor is neither payer nor receiver
        InvalidTransitionError: If the settlement is confirmed, cancelled or legacy
        ValidationError: If data is invalid or exceeds the debt
    """
    settlement = get_settlement(settlement_id)
    _require_party(settlement, actor_id)
    _require_status(settlement, *SettlementStatus.PENDING)

    new_amount = settlement.amount if amount is None else _clean_amount(amount)
    new_receiver_id = settlement.receiver_id if receiver_id is None else receiver_id

    if new_receiver_id == settlement.paid_by:
        raise ValidationError("Payer and receiver cannot be the same")
    if not is_user_member(settlement.group_id, new_receiver_id):
        raise PermissionError("The receiver must be a member of the group")

    receiver = get_user_by_id(new_receiver_id)
    receiver_changed = new_receiver_id != settlement.receiver_id
    if (receiver_changed
            and _details(settlement).payment_method == METHOD_UPI
            and not receiver.upi_id):
        raise MissingPayoutHandleError(
            f"{receiver.name or 'The receiver'} has not added a UPI ID."
        )

    if description is not None:
        error = validate_name(description, "Description", 100)
        if error:
            raise ValidationError(error)
        new_description = description.strip()
    elif receiver_changed:
        new_description = _payment_description(receiver)
    else:
        new_description = settlement.description

    _guard_debt(
        settlement.group_id, settlement.paid_by, new_receiver_id, new_amount,
        exclude_settlement_id=settlement.id,
    )

    with atomic("update the settlement"):
        settlement.amount = new_amount
        settlement.description = new_description
        settlement.splits.clear()
        db.session.flush()
        settlement.splits.append(ExpenseSplit(user_id=new_receiver_id, owe_amount=new_amount))
        settlement.last_edited_by = actor_id
        settlement.last_edited_at = utcnow()

    logger.info("Settlement %s edited by %s", settlement.id, actor_id)
    return settlement


def delete_settlement(settlement_id, actor_id, override=False):
    """
    Remove a settlement with its split and details.

    Deleting a confirmed (or legacy) settlement rewrites settled history,
    so it needs `override`.

    Raises:
        PermissionError: If actor is neither payer nor receiver
        ConfirmedSettlementError: If confirmed and override is False
    """
    settlement = get_settlement(settlement_id)
    _require_party(settlement, actor_id)

    status = settlement.settlement_status
    if status in (SettlementStatus.CONFIRMED, SettlementStatus.LEGACY) and not override:
        raise ConfirmedSettlementError(
            "This settlement is already confirmed. Deleting it changes settled history."
        )

    with atomic("delete the settlement") as session:
        session.delete(settlement)

    logger.info("Settlement %s (%s) deleted by %s", settlement_id, status, actor_id)
