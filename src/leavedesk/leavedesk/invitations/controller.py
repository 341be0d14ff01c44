from __future__ import annotations

from functools import wraps

from flask import Flask, jsonify, request, session
from flask_limiter import Limiter

from ..common.serialization import to_payload
from ..core.exceptions import ValidationError
from ..container import Container

BULK_INVITE_LIMIT = "20/minute"


def _public(invitation) -> dict:
    data = to_payload(invitation)
    data.pop("token", None)
    return data


def register(app: Flask, container: Container, limiter: Limiter) -> None:
    def login_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return jsonify({"error": "Authentication required"}), 401
            return view(*args, **kwargs)

        return wrapper

    @app.route("/api/organizations/<int:org_id>/invitations", methods=["POST"], endpoint="create_invitations")
    @limiter.limit(BULK_INVITE_LIMIT)
    @login_required
    def create_invitations(org_id: int):
        body = request.get_json(silent=True) or {}
        items = body.get("invitations")
        if not isinstance(items, list):
            raise ValidationError("invitations must be a list")

        created = container.invitation_service.create_bulk(
            organization_id=org_id,
            requester_id=int(session["user_id"]),
            items=items,
        )
        return (
            jsonify(
                {
                    "success": True,
                    "count": len(created),
                    "invitations": to_payload(created),
                }
            ),
            201,
        )

    @app.route("/api/organizations/<int:org_id>/invitations", methods=["GET"], endpoint="list_invitations")
    @login_required
    def list_invitations(org_id: int):
        pending = container.invitation_service.list_pending(organization_id=org_id, requester_id=int(session["user_id"]))
        return jsonify({"invitations": [_public(inv) for inv in pending]})

    @app.route(
        "/api/organizations/<int:org_id>/invitations/<int:invitation_id>",
        methods=["DELETE"],
        endpoint="cancel_invitation",
    )
    @login_required
    def cancel_invitation(org_id: int, invitation_id: int):
        container.invitation_service.cancel(
            organization_id=org_id,
            invitation_id=invitation_id,
            requester_id=int(session["user_id"]),
        )
        return jsonify({"success": True})

    @app.route("/api/invitations/<token>", methods=["GET"], endpoint="lookup_invitation")
    def lookup_invitation(token: str):
        return jsonify(container.invitation_service.lookup(token=token))

    @app.route("/api/invitations/accept", methods=["POST"], endpoint="accept_invitation")
    @login_required
    def accept_invitation():
        body = request.get_json(silent=True) or {}
        member = container.invitation_service.accept(token=body.get("token", ""), user_id=int(session["user_id"]))
        return jsonify({"success": True, "member": to_payload(member)})
