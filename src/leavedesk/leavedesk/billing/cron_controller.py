from __future__ import annotations

import hmac
import logging
from functools import wraps

from flask import Flask, jsonify, request

from ..container import Container

logger = logging.getLogger(__name__)


def register(app: Flask, container: Container) -> None:
    def cron_secret_required(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            expected = container.cron_secret
            header = request.headers.get("Authorization", "")
            if not expected or not hmac.compare_digest(
                header.encode("utf-8", "replace"), f"Bearer {expected}".encode("utf-8")
            ):
                logger.warning("Unauthorized cron request to %s", request.path)
                return jsonify({"error": "Unauthorized"}), 401
            if container.billing_jobs is None:
                return jsonify({"error": "Billing provider is not configured"}), 503
            return view(*args, **kwargs)

        return wrapper

    @app.route(
        "/api/cron/apply-pending-subscription-changes",
        methods=["GET", "POST"],
        endpoint="cron_apply_pending_changes",
    )
    @cron_secret_required
    def cron_apply_pending_changes():
        return jsonify(container.billing_jobs.apply_pending_changes())

    @app.route("/api/cron/reconcile-subscriptions", methods=["GET", "POST"], endpoint="cron_reconcile_subscriptions")
    @cron_secret_required
    def cron_reconcile_subscriptions():
        return jsonify(container.billing_jobs.reconcile())
