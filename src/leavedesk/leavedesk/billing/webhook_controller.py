from __future__ import annotations

import logging

from flask import Flask, jsonify, request
from flask_limiter import Limiter

from ..container import Container
from .webhooks import authenticate_request

logger = logging.getLogger(__name__)

WEBHOOK_RATE_LIMIT = "100/minute"


def register(app: Flask, container: Container, limiter: Limiter) -> None:
    @app.route("/api/webhooks/lemonsqueezy", methods=["POST"], endpoint="lemonsqueezy_webhook")
    @limiter.limit(WEBHOOK_RATE_LIMIT)
    def lemonsqueezy_webhook():
        # Signature is computed over the raw body, so read it before any JSON parsing.
        body = request.get_data(cache=True)
        payload = authenticate_request(body, request.headers.get("X-Signature"), container.webhook_secret)

        result = container.webhook_processor.process(payload)
        if not result.success:
            logger.error("Webhook %s (%s) failed: %s", result.event_id, result.event_type, result.error)
            return (
                jsonify(
                    {
                        "error": "Failed to process webhook",
                        "event_id": result.event_id,
                        "event_type": result.event_type,
                        "details": result.error,
                    }
                ),
                500,
            )

        return jsonify(
            {
                "success": True,
                "event_id": result.event_id,
                "event_type": result.event_type,
                "message": result.message,
                "data": result.data,
            }
        )
