from flask import Blueprint, g, jsonify, request

from services import split_service
from services.expense_service import (
    create_expense,
    delete_expense,
    edit_expense,
    get_expense_by_id,
    get_expense_splits,
    get_group_expenses,
)
from services.errors import PermissionError, ValidationError
from services.group_service import is_user_member
from utils.decorators import login_required
from utils.helpers import money_str, parse_amount_map, parse_flag, parse_id, parse_id_list


expenses_bp = Blueprint("expenses", __name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require_member(group_id):
    if not is_user_member(group_id, g.user_id):
        raise PermissionError("You are not a member of this group")


def expense_to_dict(expense):
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "amount": money_str(expense.amount),
        "description": expense.description,
        "category": expense.category,
        "paid_by": expense.paid_by,
        "payer_name": expense.payer.name if expense.payer else "Unknown",
        "date": expense.date.isoformat() if expense.date else None,
        "created_by": expense.created_by,
        "last_edited_by": expense.last_edited_by,
        "last_edited_at": expense.last_edited_at.isoformat() if expense.last_edited_at else None,
        "settlement_status": expense.settlement_status,
        "splits": [
            {"user_id": s.user_id, "owe_amount": money_str(s.owe_amount)}
            for s in expense.splits
        ],
    }


def _splits_to_json(splits):
    return [
        {"user_id": s["user_id"], "owe_amount": money_str(s["owe_amount"])}
        for s in splits
    ]


@expenses_bp.route("/api/splits/preview", methods=["POST"])
@login_required
def api_preview_split():
    """Live split for the add-expense form; nothing is saved."""
    data = _json_body()
    amount = data.get("amount")
    members = parse_id_list(data.get("members"))
    mode = data.get("split_mode", split_service.SPLIT_EQUAL)

    if mode not in split_service.SPLIT_MODES:
        raise ValidationError(f"Unknown split mode {mode!r}")

    locked = frozenset()
    if mode == split_service.SPLIT_EQUAL:
        splits = split_service.allocate_equal(amount, members)
    elif data.get("edited_member") is not None:
        splits, locked = split_service.recompute_on_lock(
            amount,
            members,
            set(parse_id_list(data.get("locked")) or []),
            parse_id(data.get("edited_member"), "edited_member"),
            data.get("value"),
            parse_amount_map(data.get("splits")),
        )
    else:
        manual = parse_amount_map(data.get("splits"))
        splits = split_service.allocate_custom(amount, members, manual)
        locked = frozenset(manual or ())

    result = split_service.validate_splits(amount, splits)
    return jsonify({
        "splits": _splits_to_json(splits),
        "locked": sorted(locked),
        "valid": result.ok,
        "allocated": money_str(result.allocated),
        "errors": result.errors,
    })


@expenses_bp.route("/api/expenses", methods=["POST"])
@login_required
def api_add_expense():
    data = _json_body()
    expense = create_expense(
        group_id=parse_id(data.get("group_id"), "group_id"),
        amount=data.get("amount"),
        paid_by=parse_id(data.get("paid_by"), "paid_by") or g.user_id,
        created_by=g.user_id,
        description=data.get("description"),
        split_mode=data.get("split_mode", split_service.SPLIT_EQUAL),
        members=parse_id_list(data.get("members")),
        manual_entries=parse_amount_map(data.get("splits")),
    )
    return jsonify({"status": "ok", "expense": expense_to_dict(expense)}), 201


@expenses_bp.route("/api/groups/<int:group_id>/expenses")
@login_required
def api_group_expenses(group_id):
    _require_member(group_id)
    category = request.args.get("category")
    return jsonify([expense_to_dict(e) for e in get_group_expenses(group_id, category)])


@expenses_bp.route("/api/expenses/<int:expense_id>")
@login_required
def api_get_expense(expense_id):
    expense = get_expense_by_id(expense_id)
    _require_member(expense.group_id)
    splits = get_expense_splits(expense_id)
    data = expense_to_dict(expense)
    data["split_mode"] = splits["split_mode"]
    return jsonify(data)


@expenses_bp.route("/api/expenses/<int:expense_id>", methods=["PUT"])
@login_required
def api_edit_expense(expense_id):
    data = _json_body()
    expense = edit_expense(
        expense_id=expense_id,
        user_id=g.user_id,
        amount=data.get("amount"),
        paid_by=parse_id(data.get("paid_by"), "paid_by"),
        description=data.get("description"),
        split_mode=data.get("split_mode"),
        members=parse_id_list(data.get("members")),
        manual_entries=parse_amount_map(data.get("splits")),
        receiver_id=parse_id(data.get("receiver_id"), "receiver_id"),
    )
    return jsonify({"status": "ok", "expense": expense_to_dict(expense)})


@expenses_bp.route("/api/expenses/<int:expense_id>", methods=["DELETE"])
@login_required
def api_delete_expense(expense_id):
    delete_expense(
        expense_id=expense_id,
        user_id=g.user_id,
        override=parse_flag(request.args.get("override")),
    )
    return jsonify({"status": "deleted", "expense_id": expense_id})
