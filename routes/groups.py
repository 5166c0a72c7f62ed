from flask import Blueprint, g, jsonify

from services.errors import PermissionError
from services.group_service import get_group_members, get_group_summary, is_user_member
from services.ledger_service import get_user_net_balances_by_person
from utils.decorators import login_required
from utils.helpers import money_str

groups_bp = Blueprint("groups", __name__)


def _require_member(group_id):
    if not is_user_member(group_id, g.user_id):
        raise PermissionError("You are not a member of this group")


@groups_bp.route("/api/groups/<int:group_id>/members")
@login_required
def api_group_members(group_id):
    _require_member(group_id)
    return jsonify(get_group_members(group_id))


@groups_bp.route("/api/groups/<int:group_id>/balances")
@login_required
def api_group_balances(group_id):
    _require_member(group_id)
    summary = get_group_summary(group_id, g.user_id)
    group = summary["group"]

    return jsonify({
        "group": {"id": group.id, "name": group.name, "currency": group.currency},
        "my_balance": money_str(summary["my_balance"]),
        "my_status": summary["my_status"],
        "can_leave": summary["can_leave"],
        "members": summary["members"],
        "balances": [
            {"user_id": uid, "balance": money_str(balance)}
            for uid, balance in summary["balances"].items()
        ],
        "spending": [
            {**row, "spent": money_str(row["spent"]), "percentage": money_str(row["percentage"])}
            for row in summary["spending"]
        ],
        # JSON object keys are strings
        "debts": {
            str(debtor): {str(creditor): money_str(amount) for creditor, amount in row.items()}
            for debtor, row in summary["debts"].items()
        },
        "suggestions": [
            {**s, "amount": money_str(s["amount"])} for s in summary["suggestions"]
        ],
    })


@groups_bp.route("/api/me/balances")
@login_required
def api_my_balances():
    rows = get_user_net_balances_by_person(g.user_id)
    return jsonify([{**row, "amount": money_str(row["amount"])} for row in rows])
