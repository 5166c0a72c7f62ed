"""
Ledger Service - who owes whom

The compute_* functions are pure: they take expense and split records
(model rows, or dicts with the same field names) and never touch the db.
The load_* / get_* functions read the db and hand the rows to them.

Cancelled settlements are ignored everywhere: a cancelled settlement keeps
its expense and split rows for the audit trail but no longer moves money.
"""
from collections import defaultdict

from models import (
    CATEGORY_SETTLEMENT,
    Expense,
    ExpenseSplit,
    Group,
    GroupMember,
    SettlementStatus,
    User,
)
from utils.helpers import CENT, ZERO, round2, to_decimal

# below this a balance is shown as settled up
SETTLED_THRESHOLD = CENT


def _field(record, name, default=None):
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def is_cancelled(expense):
    return _field(expense, "settlement_status") == SettlementStatus.CANCELLED


def is_settlement(expense):
    return _field(expense, "category") == CATEGORY_SETTLEMENT


def _active_index(expenses, include_settlements=True):
    index = {}
    for expense in expenses:
        if is_cancelled(expense):
            continue
        if not include_settlements and is_settlement(expense):
            continue
        index[_field(expense, "id")] = expense
    return index


def make_member(user_id, name=None, is_current_member=True):
    """The one Member shape used by every balance view."""
    return {
        "id": user_id,
        "name": name or "Unknown",
        "is_current_member": bool(is_current_member),
    }


def compute_net_balance(user_id, expenses, splits):
    """
    What `user_id` paid minus what they owe.

    amount > 0  -> the group owes them
    amount < 0  -> they owe the group
    """
    index = _active_index(expenses)

    paid = sum(
        (to_decimal(_field(e, "amount")) for e in index.values()
         if _field(e, "paid_by") == user_id),
        ZERO,
    )
    owed = sum(
        (to_decimal(_field(s, "owe_amount")) for s in splits
         if _field(s, "user_id") == user_id and _field(s, "expense_id") in index),
        ZERO,
    )
    return paid - owed


def compute_group_balances(expenses, splits, member_ids=()):
    """Net balance for every member and everyone who ever paid or owed."""
    index = _active_index(expenses)
    balances = {uid: ZERO for uid in member_ids}

    for expense in index.values():
        payer = _field(expense, "paid_by")
        balances[payer] = balances.get(payer, ZERO) + to_decimal(_field(expense, "amount"))

    for split in splits:
        if _field(split, "expense_id") not in index:
            continue
        uid = _field(split, "user_id")
        balances[uid] = balances.get(uid, ZERO) - to_decimal(_field(split, "owe_amount"))

    return balances


def balance_integrity_ok(balances):
    """
    Check if balances sum to zero (within tolerance).

    Args:
        balances: Dict mapping user_id to balance

    Returns:
        bool: True if balances are balanced
    """
    return abs(sum(balances.values(), ZERO)) < SETTLED_THRESHOLD


def balance_status(amount):
    amount = to_decimal(amount)
    if abs(amount) < SETTLED_THRESHOLD:
        return "settled"
    return "owed" if amount > 0 else "owes"


def compute_spending_shares(expenses, splits, members):
    """
    How much of the group's spending each member accounts for.

    spent = sum of the member's split shares, percentage = spent over the
    total of all expense amounts. Reporting only.
    """
    index = _active_index(expenses)
    total = sum((to_decimal(_field(e, "amount")) for e in index.values()), ZERO)

    spent_by = defaultdict(lambda: ZERO)
    for split in splits:
        if _field(split, "expense_id") in index:
            spent_by[_field(split, "user_id")] += to_decimal(_field(split, "owe_amount"))

    result = []
    for member in members:
        if not isinstance(member, dict):
            member = make_member(member)
        spent = spent_by.get(member["id"], ZERO)
        percentage = round2(spent * 100 / total) if total > 0 else ZERO
        result.append({
            "member_id": member["id"],
            "name": member["name"],
            "is_current_member": member["is_current_member"],
            "spent": spent,
            "percentage": percentage,
        })

    result.sort(key=lambda row: row["spent"], reverse=True)
    return result


def compute_debt_matrix(expenses, splits, include_settlements=True):
    """
    Pairwise net debt: matrix[a][b] is what a owes b, net of what b owes a.

    Every split row makes its member owe the expense's payer; a payer's own
    share is not a debt. matrix[a][b] == -matrix[b][a] always.
    """
    index = _active_index(expenses, include_settlements=include_settlements)
    matrix = defaultdict(lambda: defaultdict(lambda: ZERO))

    for split in splits:
        expense = index.get(_field(split, "expense_id"))
        if expense is None:
            continue

        payer = _field(expense, "paid_by")
        debtor = _field(split, "user_id")
        if payer == debtor:
            continue

        amount = to_decimal(_field(split, "owe_amount"))
        matrix[debtor][payer] += amount
        matrix[payer][debtor] -= amount

    return {debtor: dict(row) for debtor, row in matrix.items()}


def net_debt(matrix, debtor_id, creditor_id):
    """How much debtor owes creditor; negative when creditor owes debtor."""
    if debtor_id == creditor_id:
        return ZERO
    return matrix.get(debtor_id, {}).get(creditor_id, ZERO)


def reconcile_members(current_member_ids, expenses, splits, names=None):
    """
    Everyone who shows up in a group's history.

    Current members, every payer and every split participant, so people who
    left the group after running up shared debt still appear. Ex-members have
    is_current_member False; current members sort first, then by name.
    """
    names = names or {}
    current = set(current_member_ids)

    involved = list(dict.fromkeys(
        list(current_member_ids)
        + [_field(e, "paid_by") for e in expenses]
        + [_field(s, "user_id") for s in splits]
    ))

    members = [make_member(uid, names.get(uid), uid in current) for uid in involved if uid is not None]
    members.sort(key=lambda m: (not m["is_current_member"], m["name"].casefold()))
    return members


def suggest_settlements(balances):
    """
    Suggest optimal settlements to balance accounts.

    Uses a greedy algorithm to minimize number of transactions: the largest
    debtor pays the largest creditor until one of them is settled.

    Args:
        balances: Dict mapping user_id to net balance

    Returns:
        List of dicts with keys: from, to, amount
    """
    creditors = []  # People who are owed money (positive balance)
    debtors = []     # People who owe money (negative balance)

    for user_id, balance in balances.items():
        if balance > SETTLED_THRESHOLD:
            creditors.append([user_id, balance])
        elif balance < -SETTLED_THRESHOLD:
            debtors.append([user_id, -balance])

    creditors.sort(key=lambda x: x[1], reverse=True)
    debtors.sort(key=lambda x: x[1], reverse=True)

    suggestions = []
    i = j = 0

    while i < len(debtors) and j < len(creditors):
        debtor_id, debtor_amount = debtors[i]
        creditor_id, creditor_amount = creditors[j]

        settle_amount = min(debtor_amount, creditor_amount)

        suggestions.append({
            "from": debtor_id,
            "to": creditor_id,
            "amount": round2(settle_amount)
        })

        debtors[i][1] -= settle_amount
        creditors[j][1] -= settle_amount

        if debtors[i][1] < SETTLED_THRESHOLD:
            i += 1
        if creditors[j][1] < SETTLED_THRESHOLD:
            j += 1

    return suggestions


def can_leave_group(user_id, expenses, splits):
    """A member who still owes more than a rounding cent can't leave."""
    return compute_net_balance(user_id, expenses, splits) >= -SETTLED_THRESHOLD


# --------------------------------------------------
# DB loaders
# --------------------------------------------------

def load_group_ledger(group_id):
    """All expense and split rows of a group, settlements included."""
    expenses = Expense.query.filter_by(group_id=group_id).order_by(Expense.id).all()
    expense_ids = [e.id for e in expenses]
    if not expense_ids:
        return expenses, []

    splits = (
        ExpenseSplit.query
        .filter(ExpenseSplit.expense_id.in_(expense_ids))
        .order_by(ExpenseSplit.id)
        .all()
    )
    return expenses, splits


def load_group_debt_matrix(group_id, include_settlements=True):
    expenses, splits = load_group_ledger(group_id)
    return compute_debt_matrix(expenses, splits, include_settlements=include_settlements)


def get_user_net_balances_by_person(user_id):
    """
    Returns net balances per person PER GROUP, for every group the user is in.

    amount < 0  -> user owes that person
    amount > 0  -> that person owes user
    """
    group_ids = [
        gm.group_id for gm in GroupMember.query.filter_by(user_id=user_id).all()
    ]

    net = {}
    for group_id in group_ids:
        matrix = load_group_debt_matrix(group_id)
        for other_id, owed_to_user in matrix.get(user_id, {}).items():
            # matrix[user][other] is what the user owes other
            net[(other_id, group_id)] = -owed_to_user

    if not net:
        return []

    user_ids = {uid for uid, _ in net.keys()}
    users = User.query.filter(User.id.in_(user_ids)).all()
    groups = Group.query.filter(Group.id.in_(group_ids)).all()

    user_map = {u.id: u for u in users}
    group_map = {g.id: g for g in groups}

    result = []
    for (uid, gid), amount in net.items():
        if abs(amount) > SETTLED_THRESHOLD:
            result.append({
                "user_id": uid,
                "name": user_map[uid].name if uid in user_map else "Unknown",
                "group_id": gid,
                "group_name": group_map[gid].name,
                "amount": round2(amount)
            })

    result.sort(key=lambda row: (row["group_id"], row["user_id"]))
    return result
