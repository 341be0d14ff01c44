from __future__ import annotations

from typing import Any, Optional

from ..core.enums import AlertSeverity
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, to_json
from .repository import AlertRepository


class MySQLAlertRepository(AlertRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def create(self, *, severity: AlertSeverity, message: str, metadata: Optional[dict[str, Any]] = None) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "INSERT INTO alerts(severity, message, metadata) VALUES(%s,%s,%s)",
                (severity.value, message, to_json(metadata)),
            )
            return int(cur.lastrowid)
