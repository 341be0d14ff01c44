from __future__ import annotations

from functools import wraps

from flask import Flask, jsonify, request, session

from ..common.datetime_utils import parse_iso_date
from ..common.validators import require_positive_int
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

    @app.route("/api/organizations/<int:org_id>/schedule", methods=["GET"], endpoint="get_schedule")
    @login_required
    def get_schedule(org_id: int):
        year_s = request.args.get("year")
        schedule = container.schedule_service.get_schedule(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            year=require_positive_int(year_s, "year") if year_s else None,
        )
        return jsonify(schedule)

    @app.route("/api/organizations/<int:org_id>/schedule", methods=["PUT"], endpoint="set_schedule")
    @login_required
    def set_schedule(org_id: int):
        body = request.get_json(silent=True) or {}
        working_days = body.get("working_days")
        if not isinstance(working_days, list):
            raise ValidationError("working_days must be a list")

        user_id = body.get("user_id")
        days = container.schedule_service.set_working_days(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            working_days=working_days,
            user_id=require_positive_int(user_id, "user_id") if user_id else None,
        )
        return jsonify({"working_days": list(days)})

    @app.route("/api/organizations/<int:org_id>/holidays", methods=["POST"], endpoint="add_holiday")
    @login_required
    def add_holiday(org_id: int):
        body = request.get_json(silent=True) or {}
        holiday_id = container.schedule_service.add_holiday(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            holiday_date=parse_iso_date(body.get("date") or ""),
            name=body.get("name", ""),
        )
        return jsonify({"holiday_id": holiday_id}), 201

    @app.route("/api/organizations/<int:org_id>/holidays/<int:holiday_id>", methods=["DELETE"], endpoint="remove_holiday")
    @login_required
    def remove_holiday(org_id: int, holiday_id: int):
        container.schedule_service.remove_holiday(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            holiday_id=holiday_id,
        )
        return jsonify({"success": True})
