from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import Flask, jsonify, request, session

from ..common.datetime_utils import parse_iso_date
from ..common.serialization import to_payload
from ..common.validators import require_positive_int
from ..core.enums import LeaveRequestStatus
from ..core.exceptions import ValidationError
from ..container import Container


def register(app: Flask, container: Container) -> None:
    def login_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return jsonify({"error": "Authentication required"}), 401
            return view(*args, **kwargs)

        return wrapper

    def _optional_int(value, field_name: str) -> Optional[int]:
        if value in (None, ""):
            return None
        return require_positive_int(value, field_name)

    def _optional_date(value):
        return parse_iso_date(value) if value else None

    @app.route("/api/organizations/<int:org_id>/leave-requests", methods=["GET"], endpoint="list_leave_requests")
    @login_required
    def list_leave_requests(org_id: int):
        requester_id = int(session["user_id"])
        if request.args.get("scope") == "pending":
            rows = container.leave_service.list_pending(organization_id=org_id, requester_id=requester_id)
            return jsonify({"requests": to_payload(list(rows))})

        status = None
        status_s = request.args.get("status")
        if status_s:
            try:
                status = LeaveRequestStatus(status_s)
            except ValueError:
                raise ValidationError("Invalid leave request status")

        rows = container.leave_service.list_for_user(
            organization_id=org_id,
            requester_id=requester_id,
            user_id=_optional_int(request.args.get("user_id"), "user_id"),
            status=status,
        )
        return jsonify({"requests": to_payload(list(rows))})

    @app.route("/api/organizations/<int:org_id>/leave-requests", methods=["POST"], endpoint="create_leave_request")
    @login_required
    def create_leave_request(org_id: int):
        body = request.get_json(silent=True) or {}
        req = container.leave_service.create_request(
            organization_id=org_id,
            user_id=int(session["user_id"]),
            leave_type_id=require_positive_int(body.get("leave_type_id"), "leave_type_id"),
            start_date=parse_iso_date(body.get("start_date") or ""),
            end_date=parse_iso_date(body.get("end_date") or ""),
            reason=body.get("reason", ""),
        )
        return jsonify({"request": to_payload(req)}), 201

    @app.route("/api/leave-requests/<int:request_id>/approve", methods=["POST"], endpoint="approve_leave_request")
    @login_required
    def approve_leave_request(request_id: int):
        req = container.leave_service.approve(request_id=request_id, reviewer_id=int(session["user_id"]))
        return jsonify({"request": to_payload(req)})

    @app.route("/api/leave-requests/<int:request_id>/reject", methods=["POST"], endpoint="reject_leave_request")
    @login_required
    def reject_leave_request(request_id: int):
        body = request.get_json(silent=True) or {}
        req = container.leave_service.reject(
            request_id=request_id,
            reviewer_id=int(session["user_id"]),
            rejection_reason=body.get("rejection_reason", ""),
        )
        return jsonify({"request": to_payload(req)})

    @app.route("/api/leave-requests/<int:request_id>/cancel", methods=["POST"], endpoint="cancel_leave_request")
    @login_required
    def cancel_leave_request(request_id: int):
        req = container.leave_service.cancel(request_id=request_id, requester_id=int(session["user_id"]))
        return jsonify({"request": to_payload(req)})

    @app.route("/api/leave-requests/<int:request_id>", methods=["PATCH"], endpoint="edit_leave_request")
    @login_required
    def edit_leave_request(request_id: int):
        body = request.get_json(silent=True) or {}
        req = container.leave_service.edit(
            request_id=request_id,
            requester_id=int(session["user_id"]),
            leave_type_id=_optional_int(body.get("leave_type_id"), "leave_type_id"),
            start_date=_optional_date(body.get("start_date")),
            end_date=_optional_date(body.get("end_date")),
            reason=body.get("reason"),
        )
        return jsonify({"request": to_payload(req)})

    @app.route("/api/organizations/<int:org_id>/leave-balances", methods=["GET"], endpoint="leave_balances")
    @login_required
    def leave_balances(org_id: int):
        balances = container.leave_service.balances_for_user(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            user_id=_optional_int(request.args.get("user_id"), "user_id"),
            year=_optional_int(request.args.get("year"), "year"),
        )
        return jsonify(
            {
                "balances": [
                    {**to_payload(b), "remaining_days": b.remaining_days}
                    for b in balances
                ]
            }
        )

    @app.route("/api/organizations/<int:org_id>/leave-balances", methods=["PUT"], endpoint="set_leave_balance")
    @login_required
    def set_leave_balance(org_id: int):
        body = request.get_json(silent=True) or {}
        balance = container.leave_service.admin_set_balance(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            user_id=require_positive_int(body.get("user_id"), "user_id"),
            leave_type_id=require_positive_int(body.get("leave_type_id"), "leave_type_id"),
            entitled_days=body.get("entitled_days"),
            year=_optional_int(body.get("year"), "year"),
        )
        return jsonify({"balance": {**to_payload(balance), "remaining_days": balance.remaining_days}})
