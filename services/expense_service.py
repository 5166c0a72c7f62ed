"""
Expense Service - Business logic for expense operations

Rules:
- No Flask (request, session, redirect, flash)
- No decorators
- Can use models and db
- Can raise exceptions
- Returns plain Python data
"""
import logging

from models import db, Expense, ExpenseSplit, CATEGORY_EXPENSE, utcnow
from services import split_service
from services.errors import (
    ExpenseNotFoundError,
    PermissionError,
    ValidationError,
)
from services.group_service import get_group_by_id, get_group_member_ids, is_user_member
from utils.helpers import atomic, to_decimal
from utils.validation import validate_amount, validate_name

logger = logging.getLogger(__name__)

DESCRIPTION_MAX_LENGTH = 100


def _clean_description(description):
    error = validate_name(description, "Description", DESCRIPTION_MAX_LENGTH)
    if error:
        raise ValidationError(error)
    return description.strip()


def _clean_amount(amount):
    error = validate_amount(amount)
    if error:
        raise ValidationError(error)
    return to_decimal(amount)


def _allocate(group_id, amount, split_mode, members, manual_entries):
    """Turn the form's split choice into split rows, checked against the group."""
    if split_mode not in split_service.SPLIT_MODES:
        raise ValidationError(f"Unknown split mode {split_mode!r}")

    group_member_ids = get_group_member_ids(group_id)
    if not group_member_ids:
        raise ValidationError("Group has no members")

    members = list(members) if members else group_member_ids
    outsiders = [m for m in members if m not in group_member_ids]
    if outsiders:
        raise ValidationError(f"User(s) {outsiders} are not members of this group")

    if split_mode == split_service.SPLIT_EQUAL:
        splits = split_service.allocate_equal(amount, members)
    else:
        splits = split_service.allocate_custom(amount, members, manual_entries)

    # a few cents over many members can leave the first share negative
    split_service.ensure_valid_splits(amount, splits)
    return splits


def _add_splits(expense, splits):
    for split in splits:
        expense.splits.append(
            ExpenseSplit(user_id=split["user_id"], owe_amount=split["owe_amount"])
        )


def create_expense(group_id, amount, paid_by, created_by, description=None,
                   split_mode=split_service.SPLIT_EQUAL, members=None,
                   manual_entries=None, date=None):
    """
    Create an expense with splits.

    Args:
        group_id: Group ID
        amount: Expense amount (anything Decimal accepts, max 2 decimals)
        paid_by: User ID who paid
        created_by: User ID recording the expense
        description: What it was for (required, max 100 chars)
        split_mode: "equal" or "custom"
        members: User IDs sharing the cost (defaults to every group member)
        manual_entries: For "custom", dict mapping user_id to typed amount;
                        members without an entry share the rest equally
        date: When it happened (defaults to now)

    Returns:
        Expense object

    Raises:
        ValidationError / InvalidSplitError: If data is invalid
        GroupNotFoundError: If group doesn't exist
        PermissionError: If creator or payer isn't in the group
        PersistenceError: If the write fails (nothing is kept)
    """
    if not group_id or not paid_by or not created_by:
        raise ValidationError("group_id, paid_by and created_by are required")

    description = _clean_description(description)
    amount = _clean_amount(amount)

    get_group_by_id(group_id)
    if not is_user_member(group_id, created_by):
        raise PermissionError("You can only add expenses to groups you belong to")
    if not is_user_member(group_id, paid_by):
        raise PermissionError("The payer must be a member of the group")

    splits = _allocate(group_id, amount, split_mode, members, manual_entries)

    with atomic("create the expense") as session:
        expense = Expense(
            group_id=group_id,
            amount=amount,
            paid_by=paid_by,
            created_by=created_by,
            description=description,
            category=CATEGORY_EXPENSE,
        )
        if date is not None:
            expense.date = date
        _add_splits(expense, splits)
        session.add(expense)

    logger.info(
        "Expense %s created in group %s: %s paid by %s, %s split between %d",
        expense.id, group_id, amount, paid_by, split_mode, len(splits),
    )
    return expense


def get_expense_by_id(expense_id):
    """
    Get an expense by ID.

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
    """
    expense = db.session.get(Expense, expense_id)
    if not expense:
        raise ExpenseNotFoundError(f"Expense {expense_id} not found")
    return expense


def get_group_expenses(group_id, category=None):
    """
    Get all expenses for a group, newest first.

    Args:
        group_id: Group ID
        category: Only "expense" or only "settlement" rows (optional)
    """
    get_group_by_id(group_id)
    query = Expense.query.filter_by(group_id=group_id)
    if category:
        query = query.filter_by(category=category)
    return query.order_by(Expense.date.desc(), Expense.id.desc()).all()


def _current_splits(expense):
    """Stored split rows and the mode they were made in, judged against
    the members who share this expense (not the whole group)."""
    splits = [
        {"user_id": s.user_id, "owe_amount": s.owe_amount}
        for s in expense.splits
    ]
    mode = split_service.detect_split_mode(
        expense.amount, splits, [s["user_id"] for s in splits]
    )
    return splits, mode


def get_expense_splits(expense_id):
    """Split rows of an expense plus the mode an edit form should open in."""
    expense = get_expense_by_id(expense_id)
    splits, mode = _current_splits(expense)
    return {"expense_id": expense.id, "split_mode": mode, "splits": splits}


def _can_change(expense, user_id):
    group = get_group_by_id(expense.group_id)
    return user_id in (expense.created_by, expense.paid_by, group.created_by)


def edit_expense(expense_id, user_id, amount=None, paid_by=None, description=None,
                 date=None, split_mode=None, members=None, manual_entries=None,
                 receiver_id=None):
    """
    Edit an expense.

    Rules:
    - Only the creator, the payer or the group creator can edit
    - Settlements go through the settlement rules instead
    - When the amount or the split changes, old splits are replaced
      wholesale; without a new split choice the previous mode and members
      are reused

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        PermissionError: If user doesn't have permission
        ValidationError / InvalidSplitError: If data is invalid
    """
    expense = get_expense_by_id(expense_id)

    if expense.is_settlement:
        from services.settlement_service import edit_settlement
        return edit_settlement(
            expense_id,
            user_id,
            amount=amount,
            description=description,
            receiver_id=receiver_id,
        )

    if not _can_change(expense, user_id):
        raise PermissionError("You don't have permission to edit this expense")

    new_amount = expense.amount if amount is None else _clean_amount(amount)
    new_description = expense.description if description is None else _clean_description(description)

    if paid_by is not None and paid_by != expense.paid_by:
        if not is_user_member(expense.group_id, paid_by):
            raise PermissionError("The payer must be a member of the group")

    splits = None
    if new_amount != expense.amount or split_mode or members or manual_entries:
        current, previous_mode = _current_splits(expense)
        previous_members = [s["user_id"] for s in current]
        if split_mode is None:
            split_mode = previous_mode
        if split_mode == split_service.SPLIT_CUSTOM and manual_entries is None:
            manual_entries = split_service.splits_to_map(current)
        splits = _allocate(
            expense.group_id, new_amount, split_mode,
            members or previous_members, manual_entries,
        )

    with atomic("update the expense"):
        expense.amount = new_amount
        expense.description = new_description
        if paid_by is not None:
            expense.paid_by = paid_by
        if date is not None:
            expense.date = date
        if splits is not None:
            expense.splits.clear()
            db.session.flush()
            _add_splits(expense, splits)

        expense.last_edited_by = user_id
        expense.last_edited_at = utcnow()

    logger.info("Expense %s edited by %s", expense.id, user_id)
    return expense


def delete_expense(expense_id, user_id, override=False):
    """
    Delete an expense together with its splits.

    Rules:
    - Only the creator, the payer or the group creator can delete
    - Settlements go through the settlement rules (confirmed ones need
      `override`)

    Raises:
        ExpenseNotFoundError: If expense doesn't exist
        PermissionError: If user doesn't have permission
    """
    expense = get_expense_by_id(expense_id)

    if expense.is_settlement:
        from services.settlement_service import delete_settlement
        return delete_settlement(expense_id, user_id, override=override)

    if not _can_change(expense, user_id):
        raise PermissionError("You don't have permission to delete this expense")

    with atomic("delete the expense") as session:
        session.delete(expense)

    logger.info("Expense %s deleted by %s", expense_id, user_id)
