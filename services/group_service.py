"""
Group Service - read side of groups and memberships

Group create/rename/delete and invites are handled elsewhere; the ledger
only needs to know who is (or was) in a group.
"""
from models import db, Group, GroupMember, User
from services.errors import GroupNotFoundError, NotFoundError
from services import ledger_service


def get_group_by_id(group_id):
    """
    Get a group by ID.

    Args:
        group_id: Group ID

    Returns:
        Group object

    Raises:
        GroupNotFoundError: If group doesn't exist
    """
    group = db.session.get(Group, group_id)
    if not group:
        raise GroupNotFoundError(f"Group {group_id} not found")
    return group


def get_user_by_id(user_id):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def is_user_member(group_id, user_id):
    """
    Check if a user is a member of a group.

    Args:
        group_id: Group ID
        user_id: User ID

    Returns:
        bool
    """
    return GroupMember.query.filter_by(
        group_id=group_id,
        user_id=user_id
    ).first() is not None


def get_group_member_ids(group_id):
    return [
        m.user_id
        for m in GroupMember.query.filter_by(group_id=group_id).order_by(GroupMember.id).all()
    ]


def get_group_members(group_id):
    """
    Get all current members of a group as Member records.

    Raises:
        GroupNotFoundError: If group doesn't exist
    """
    get_group_by_id(group_id)  # Validate group exists

    users = (
        db.session.query(User)
        .join(GroupMember, GroupMember.user_id == User.id)
        .filter(GroupMember.group_id == group_id)
        .order_by(GroupMember.id)
        .all()
    )
    return [ledger_service.make_member(u.id, u.name, True) for u in users]


def _user_names(user_ids):
    user_ids = [uid for uid in set(user_ids) if uid is not None]
    if not user_ids:
        return {}
    return {u.id: u.name for u in User.query.filter(User.id.in_(user_ids)).all()}


def get_involved_members(group_id, expenses=None, splits=None):
    """Current members plus anyone who left but still appears in the ledger."""
    get_group_by_id(group_id)
    if expenses is None or splits is None:
        expenses, splits = ledger_service.load_group_ledger(group_id)

    member_ids = get_group_member_ids(group_id)
    names = _user_names(
        member_ids + [e.paid_by for e in expenses] + [s.user_id for s in splits]
    )
    return ledger_service.reconcile_members(member_ids, expenses, splits, names)


def get_group_summary(group_id, current_user_id):
    """
    Everything a group's balance page shows.

    Returns:
        Dict with keys: group, members, my_balance, my_status, balances,
        spending, debts, suggestions, can_leave
    """
    group = get_group_by_id(group_id)
    expenses, splits = ledger_service.load_group_ledger(group_id)
    members = get_involved_members(group_id, expenses, splits)
    names = {m["id"]: m["name"] for m in members}

    balances = ledger_service.compute_group_balances(
        expenses, splits, [m["id"] for m in members]
    )
    my_balance = ledger_service.compute_net_balance(current_user_id, expenses, splits)

    suggestions = []
    for suggestion in ledger_service.suggest_settlements(balances):
        suggestions.append({
            **suggestion,
            "from_name": names.get(suggestion["from"], "Unknown"),
            "to_name": names.get(suggestion["to"], "Unknown"),
        })

    return {
        "group": group,
        "members": members,
        "my_balance": my_balance,
        "my_status": ledger_service.balance_status(my_balance),
        "balances": balances,
        "spending": ledger_service.compute_spending_shares(expenses, splits, members),
        "debts": ledger_service.compute_debt_matrix(expenses, splits),
        "suggestions": suggestions,
        "can_leave": ledger_service.can_leave_group(current_user_id, expenses, splits),
    }
