from __future__ import annotations

from functools import wraps

from flask import Flask, jsonify, request, session

from ..core.enums import BillingPeriod
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

    @app.route("/api/organizations/<int:org_id>/billing/quantity", methods=["POST"], endpoint="update_quantity")
    @login_required
    def update_quantity(org_id: int):
        body = request.get_json(silent=True) or {}
        result = container.subscription_service.update_quantity(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            new_quantity=body.get("quantity"),
        )
        return jsonify(result)

    @app.route("/api/organizations/<int:org_id>/billing/period", methods=["POST"], endpoint="change_billing_period")
    @login_required
    def change_billing_period(org_id: int):
        body = request.get_json(silent=True) or {}
        try:
            period = BillingPeriod(str(body.get("billing_period") or "").strip().lower())
        except ValueError:
            raise ValidationError("billing_period must be monthly or yearly")

        result = container.subscription_service.change_billing_period(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            period=period,
        )
        return jsonify(result)
