from flask import Blueprint, g, jsonify, request

from models import METHOD_MANUAL, METHOD_UPI, SettlementStatus
from services.errors import PermissionError, ValidationError
from services.group_service import is_user_member
from services.settlement_service import (
    attach_utr,
    build_payment_intent,
    cancel_settlement,
    check_over_settlement,
    confirm_settlement,
    create_settlement,
    delete_settlement,
    edit_settlement,
    get_group_settlements,
    get_settlement,
    settlement_to_dict,
)
from utils.decorators import login_required
from utils.helpers import money_str, parse_flag, parse_id

settlements_bp = Blueprint("settlements", __name__)


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _visible_settlement(settlement_id):
    settlement = get_settlement(settlement_id)
    if not is_user_member(settlement.group_id, g.user_id) and g.user_id not in (
        settlement.paid_by, settlement.receiver_id
    ):
        raise PermissionError("You are not a member of this group")
    return settlement


@settlements_bp.route("/api/settlements", methods=["POST"])
@login_required
def api_add_settlement():
    data = _json_body()
    method = data.get("method", METHOD_MANUAL)
    settlement = create_settlement(
        group_id=parse_id(data.get("group_id"), "group_id"),
        payer_id=parse_id(data.get("payer_id"), "payer_id") or g.user_id,
        receiver_id=parse_id(data.get("receiver_id"), "receiver_id"),
        amount=data.get("amount"),
        method=method,
        actor_id=g.user_id,
    )

    body = {"status": "recorded", "settlement": settlement_to_dict(settlement, g.user_id)}
    if method == METHOD_UPI:
        body["payment_intent"] = build_payment_intent(settlement)
    return jsonify(body), 201


@settlements_bp.route("/api/groups/<int:group_id>/settlements")
@login_required
def api_group_settlements(group_id):
    if not is_user_member(group_id, g.user_id):
        raise PermissionError("You are not a member of this group")

    statuses = request.args.getlist("status") or None
    unknown = [s for s in statuses or [] if s not in SettlementStatus.LIVE + (SettlementStatus.CANCELLED,)]
    if unknown:
        raise ValidationError(f"Unknown status {unknown[0]!r}")

    return jsonify([
        settlement_to_dict(s, g.user_id)
        for s in get_group_settlements(group_id, statuses)
    ])


@settlements_bp.route("/api/settlements/<int:settlement_id>")
@login_required
def api_get_settlement(settlement_id):
    settlement = _visible_settlement(settlement_id)
    return jsonify(settlement_to_dict(settlement, g.user_id))


@settlements_bp.route("/api/settlements/<int:settlement_id>/payment-intent")
@login_required
def api_payment_intent(settlement_id):
    settlement = _visible_settlement(settlement_id)
    return jsonify({"payment_intent": build_payment_intent(settlement)})


@settlements_bp.route("/api/settlements/<int:settlement_id>/utr", methods=["POST"])
@login_required
def api_attach_utr(settlement_id):
    data = _json_body()
    settlement = attach_utr(settlement_id, g.user_id, data.get("utr"))
    return jsonify(settlement_to_dict(settlement, g.user_id))


@settlements_bp.route("/api/settlements/<int:settlement_id>/over-settlement")
@login_required
def api_check_over_settlement(settlement_id):
    _visible_settlement(settlement_id)
    check = check_over_settlement(settlement_id)
    return jsonify({
        "is_over": check["is_over"],
        "actual": money_str(check["actual"]),
        "pending": money_str(check["pending"]),
        "excess": money_str(check["excess"]),
    })


@settlements_bp.route("/api/settlements/<int:settlement_id>/confirm", methods=["POST"])
@login_required
def api_confirm_settlement(settlement_id):
    data = _json_body()
    settlement = confirm_settlement(
        settlement_id, g.user_id, override=parse_flag(data.get("override"))
    )
    return jsonify(settlement_to_dict(settlement, g.user_id))


@settlements_bp.route("/api/settlements/<int:settlement_id>/cancel", methods=["POST"])
@login_required
def api_cancel_settlement(settlement_id):
    data = _json_body()
    settlement = cancel_settlement(settlement_id, g.user_id, data.get("reason"))
    return jsonify(settlement_to_dict(settlement, g.user_id))


@settlements_bp.route("/api/settlements/<int:settlement_id>", methods=["PUT"])
@login_required
def api_edit_settlement(settlement_id):
    data = _json_body()
    settlement = edit_settlement(
        settlement_id,
        g.user_id,
        amount=data.get("amount"),
        receiver_id=parse_id(data.get("receiver_id"), "receiver_id"),
        description=data.get("description"),
    )
    return jsonify(settlement_to_dict(settlement, g.user_id))


@settlements_bp.route("/api/settlements/<int:settlement_id>", methods=["DELETE"])
@login_required
def api_delete_settlement(settlement_id):
    delete_settlement(
        settlement_id, g.user_id, override=parse_flag(request.args.get("override"))
    )
    return jsonify({"status": "deleted", "settlement_id": settlement_id})
