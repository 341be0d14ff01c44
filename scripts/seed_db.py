from __future__ import annotations

import importlib
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from config import get_settings_module

from src.leavedesk.leavedesk.database.bootstrap import DEMO_PASSWORD, apply_seed_sql, ensure_demo_users

DEMO_ACCOUNTS = ("admin@demo.test", "manager@demo.test", "employee@demo.test")


def main() -> None:
    settings = importlib.import_module(get_settings_module())
    db_config = dict(settings.DB_CONFIG)

    apply_seed_sql(db_config, seed_path=REPO_ROOT / "database" / "seed.sql")
    ensure_demo_users(db_config)

    print(f"OK: Demo Workspace seeded in {db_config.get('database')}")
    for email in DEMO_ACCOUNTS:
        print(f"  {email} / {DEMO_PASSWORD}")


if __name__ == "__main__":
    main()
