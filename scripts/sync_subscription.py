"""Overwrite one local subscription with the state Lemon Squeezy reports.

Usage: python scripts/sync_subscription.py <provider_subscription_id>
"""
from __future__ import annotations

import argparse
import importlib
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import get_settings_module

from src.leavedesk.leavedesk.container import build_container
from src.leavedesk.leavedesk.core.exceptions import DomainError
from src.leavedesk.leavedesk.logging_config import configure_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync a subscription from Lemon Squeezy.")
    parser.add_argument("subscription_id", help="Lemon Squeezy subscription id")
    args = parser.parse_args(argv)

    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))

    container = build_container(db_config=dict(settings.DB_CONFIG), settings=settings)
    if container.billing_jobs is None:
        print("ERROR: LEMONSQUEEZY_API_KEY is not set")
        return 2

    try:
        subscription = container.billing_jobs.sync_subscription(args.subscription_id)
    except DomainError as e:
        print(f"ERROR: {e}")
        return 1

    print(
        f"OK: subscription {subscription.provider_subscription_id} "
        f"status={subscription.status.value} quantity={subscription.quantity} "
        f"current_seats={subscription.current_seats} pending_seats={subscription.pending_seats}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
