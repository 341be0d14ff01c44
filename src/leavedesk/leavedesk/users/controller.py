from __future__ import annotations

from datetime import timedelta
from functools import wraps

from flask import Flask, jsonify, request, session

from ..common.serialization import to_payload
from ..container import Container


def register(app: Flask, container: Container) -> None:
    def login_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if "user_id" not in session:
                return jsonify({"error": "Authentication required"}), 401
            return view(*args, **kwargs)

        return wrapper

    @app.route("/api/auth/login", methods=["POST"], endpoint="login")
    def login():
        body = request.get_json(silent=True) or {}
        s_user = container.auth_service.authenticate(body.get("email", ""), body.get("password", ""))

        session.clear()
        session.permanent = bool(body.get("remember_me"))
        app.permanent_session_lifetime = timedelta(days=7)
        session["user_id"] = s_user.user_id
        session["email"] = s_user.email
        session["name"] = s_user.full_name

        return jsonify({"user": to_payload(s_user)})

    @app.route("/api/auth/logout", methods=["POST"], endpoint="logout")
    def logout():
        session.clear()
        return jsonify({"success": True})

    @app.route("/api/auth/register", methods=["POST"], endpoint="register_user")
    def register_user():
        body = request.get_json(silent=True) or {}
        user_id = container.auth_service.register_user(
            email=body.get("email", ""),
            full_name=body.get("full_name", ""),
            password=body.get("password", ""),
        )
        return jsonify({"user_id": user_id}), 201

    @app.route("/api/auth/me", methods=["GET"], endpoint="me")
    @login_required
    def me():
        user_id = int(session["user_id"])
        return jsonify(
            {
                "user": {"user_id": user_id, "email": session.get("email"), "full_name": session.get("name")},
                "organizations": to_payload(container.organization_service.list_for_user(user_id=user_id)),
            }
        )
