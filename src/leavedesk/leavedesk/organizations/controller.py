from __future__ import annotations

from functools import wraps

from flask import Flask, jsonify, request, session

from ..common.serialization import to_payload
from ..core.enums import MembershipStatus, Role
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

    def _current_user_id() -> int:
        return int(session["user_id"])

    @app.route("/api/organizations", methods=["POST"], endpoint="create_organization")
    @login_required
    def create_organization():
        body = request.get_json(silent=True) or {}
        organization_id = container.organization_service.create_workspace(
            user_id=_current_user_id(),
            name=body.get("name", ""),
        )
        return jsonify({"organization_id": organization_id}), 201

    @app.route("/api/organizations/<int:org_id>/members", methods=["GET"], endpoint="list_members")
    @login_required
    def list_members(org_id: int):
        status = None
        status_s = request.args.get("status")
        if status_s:
            try:
                status = MembershipStatus(status_s)
            except ValueError:
                raise ValidationError("Invalid member status")

        members = container.organization_service.list_members(
            organization_id=org_id,
            requester_id=_current_user_id(),
            status=status,
        )
        return jsonify({"members": to_payload(list(members))})

    @app.route("/api/organizations/<int:org_id>/members/<int:user_id>/role", methods=["PATCH"], endpoint="change_role")
    @login_required
    def change_role(org_id: int, user_id: int):
        body = request.get_json(silent=True) or {}
        try:
            role = Role(str(body.get("role") or "").strip().lower())
        except ValueError:
            raise ValidationError("Role must be admin, manager, or employee")

        member = container.organization_service.change_role(
            organization_id=org_id,
            requester_id=_current_user_id(),
            user_id=user_id,
            role=role,
        )
        return jsonify({"member": to_payload(member)})

    @app.route("/api/organizations/<int:org_id>/members/<int:user_id>/remove", methods=["POST"], endpoint="remove_member")
    @login_required
    def remove_member(org_id: int, user_id: int):
        result = container.seat_management_service.remove_user(
            organization_id=org_id,
            user_id=user_id,
            requester_id=_current_user_id(),
        )
        return jsonify(
            {
                "success": True,
                "message": "User marked for removal. They keep access until the end of the billing period.",
                **to_payload(result),
            }
        )

    @app.route(
        "/api/organizations/<int:org_id>/members/<int:user_id>/reactivate",
        methods=["POST"],
        endpoint="reactivate_member",
    )
    @login_required
    def reactivate_member(org_id: int, user_id: int):
        result = container.seat_management_service.reactivate_user(
            organization_id=org_id,
            user_id=user_id,
            requester_id=_current_user_id(),
        )
        return jsonify({"success": True, "message": "User reactivated", **to_payload(result)})

    @app.route(
        "/api/organizations/<int:org_id>/members/<int:user_id>/unarchive",
        methods=["POST"],
        endpoint="unarchive_member",
    )
    @login_required
    def unarchive_member(org_id: int, user_id: int):
        result = container.seat_management_service.reactivate_archived_user(
            organization_id=org_id,
            user_id=user_id,
            requester_id=_current_user_id(),
        )
        return jsonify({"success": True, "message": "Archived user reactivated", **to_payload(result)})

    @app.route("/api/organizations/<int:org_id>/seat-info", methods=["GET"], endpoint="seat_info")
    @login_required
    def seat_info(org_id: int):
        info = container.subscription_service.seat_info(organization_id=org_id, requester_id=_current_user_id())
        return jsonify(info)
