"""Run the subscription reconciliation job once, outside the web app.

Usage: python scripts/reconcile_subscriptions.py [--apply-pending]
"""
from __future__ import annotations

import argparse
import importlib
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from dotenv import load_dotenv

from config import get_settings_module

from src.leavedesk.leavedesk.container import build_container
from src.leavedesk.leavedesk.logging_config import configure_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Compare local seat counts with Lemon Squeezy.")
    parser.add_argument(
        "--apply-pending",
        action="store_true",
        help="push scheduled seat reductions due within the renewal window first",
    )
    args = parser.parse_args(argv)

    load_dotenv(override=False)
    settings = importlib.import_module(get_settings_module())
    configure_logging(getattr(settings, "LOG_LEVEL", "INFO"))

    container = build_container(db_config=dict(settings.DB_CONFIG), settings=settings)
    if container.billing_jobs is None:
        print("ERROR: LEMONSQUEEZY_API_KEY is not set")
        return 2

    if args.apply_pending:
        print(json.dumps(container.billing_jobs.apply_pending_changes(), indent=2, default=str))

    summary = container.billing_jobs.reconcile()
    print(json.dumps(summary, indent=2, default=str))
    return 1 if summary.get("mismatches") or summary.get("errors") else 0


if __name__ == "__main__":
    sys.exit(main())
