from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Sequence

from ..core.enums import LeaveRequestStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import as_float, db_cursor, fetchall, fetchone
from .model import LeaveBalance, LeaveRequest, LeaveType
from .repository import LeaveRepository

_REQUEST_COLUMNS = """
    request_id, organization_id, user_id, leave_type_id, start_date, end_date,
    days_requested, reason, status, reviewed_by, reviewed_at, rejection_reason,
    edited_by, edited_at, created_at
"""


def _row_to_type(r: dict) -> LeaveType:
    return LeaveType(
        leave_type_id=int(r["leave_type_id"]),
        organization_id=int(r["organization_id"]),
        name=r["name"],
        days_per_year=int(r["days_per_year"] or 0),
        requires_balance=bool(r["requires_balance"]),
        requires_approval=bool(r["requires_approval"]),
        is_paid=bool(r["is_paid"]),
    )


def _row_to_balance(r: dict) -> LeaveBalance:
    return LeaveBalance(
        balance_id=int(r["balance_id"]),
        organization_id=int(r["organization_id"]),
        user_id=int(r["user_id"]),
        leave_type_id=int(r["leave_type_id"]),
        year=int(r["year"]),
        entitled_days=as_float(r["entitled_days"]),
        used_days=as_float(r["used_days"]),
        leave_type_name=r.get("leave_type_name"),
    )


def _row_to_request(r: dict) -> LeaveRequest:
    return LeaveRequest(
        request_id=int(r["request_id"]),
        organization_id=int(r["organization_id"]),
        user_id=int(r["user_id"]),
        leave_type_id=int(r["leave_type_id"]),
        start_date=r["start_date"],
        end_date=r["end_date"],
        days_requested=as_float(r["days_requested"]),
        status=LeaveRequestStatus(r["status"]),
        reason=r.get("reason"),
        reviewed_by=r.get("reviewed_by"),
        reviewed_at=r.get("reviewed_at"),
        rejection_reason=r.get("rejection_reason"),
        edited_by=r.get("edited_by"),
        edited_at=r.get("edited_at"),
        created_at=r.get("created_at"),
    )


class MySQLLeaveRepository(LeaveRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    # -------- Leave types --------
    def list_types(self, *, organization_id: int) -> Sequence[LeaveType]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT leave_type_id, organization_id, name, days_per_year,
                       requires_balance, requires_approval, is_paid
                FROM leave_types
                WHERE organization_id=%s
                ORDER BY name
                """,
                (int(organization_id),),
            )
            return [_row_to_type(r) for r in fetchall(cur)]

    def get_type(self, *, leave_type_id: int) -> Optional[LeaveType]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT leave_type_id, organization_id, name, days_per_year,
                       requires_balance, requires_approval, is_paid
                FROM leave_types
                WHERE leave_type_id=%s
                """,
                (int(leave_type_id),),
            )
            r = fetchone(cur)
            return _row_to_type(r) if r else None

    def create_type(
        self,
        *,
        organization_id: int,
        name: str,
        days_per_year: int,
        requires_balance: bool,
        requires_approval: bool,
        is_paid: bool,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_types(
                    organization_id, name, days_per_year, requires_balance, requires_approval, is_paid
                )
                VALUES(%s,%s,%s,%s,%s,%s)
                ON DUPLICATE KEY UPDATE leave_type_id=LAST_INSERT_ID(leave_type_id)
                """,
                (
                    int(organization_id),
                    name,
                    int(days_per_year),
                    int(requires_balance),
                    int(requires_approval),
                    int(is_paid),
                ),
            )
            return int(cur.lastrowid)

    # -------- Balances --------
    def get_balance(self, *, user_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT b.balance_id, b.organization_id, b.user_id, b.leave_type_id, b.year,
                       b.entitled_days, b.used_days, lt.name AS leave_type_name
                FROM leave_balances b
                JOIN leave_types lt ON lt.leave_type_id = b.leave_type_id
                WHERE b.user_id=%s AND b.leave_type_id=%s AND b.year=%s
                """,
                (int(user_id), int(leave_type_id), int(year)),
            )
            r = fetchone(cur)
            return _row_to_balance(r) if r else None

    def list_balances(self, *, organization_id: int, user_id: int, year: int) -> Sequence[LeaveBalance]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT b.balance_id, b.organization_id, b.user_id, b.leave_type_id, b.year,
                       b.entitled_days, b.used_days, lt.name AS leave_type_name
                FROM leave_balances b
                JOIN leave_types lt ON lt.leave_type_id = b.leave_type_id
                WHERE b.organization_id=%s AND b.user_id=%s AND b.year=%s
                ORDER BY lt.name
                """,
                (int(organization_id), int(user_id), int(year)),
            )
            return [_row_to_balance(r) for r in fetchall(cur)]

    def create_balance(
        self,
        *,
        organization_id: int,
        user_id: int,
        leave_type_id: int,
        year: int,
        entitled_days: float,
        used_days: float = 0,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_balances(organization_id, user_id, leave_type_id, year, entitled_days, used_days)
                VALUES(%s,%s,%s,%s,%s,%s)
                ON DUPLICATE KEY UPDATE balance_id=LAST_INSERT_ID(balance_id)
                """,
                (int(organization_id), int(user_id), int(leave_type_id), int(year), entitled_days, used_days),
            )
            return int(cur.lastrowid)

    def update_balance(
        self,
        *,
        balance_id: int,
        entitled_days: Optional[float] = None,
        used_days: Optional[float] = None,
    ) -> bool:
        sets: list[str] = []
        params: list[object] = []
        if entitled_days is not None:
            sets.append("entitled_days=%s")
            params.append(entitled_days)
        if used_days is not None:
            sets.append("used_days=%s")
            params.append(used_days)
        if not sets:
            return False

        params.append(int(balance_id))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"UPDATE leave_balances SET {', '.join(sets)} WHERE balance_id=%s", tuple(params))
            return cur.rowcount > 0

    # -------- Requests --------
    def create_request(
        self,
        *,
        organization_id: int,
        user_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        days_requested: float,
        reason: Optional[str],
        status: LeaveRequestStatus,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO leave_requests(
                    organization_id, user_id, leave_type_id, start_date, end_date, days_requested, reason, status
                )
                VALUES(%s,%s,%s,%s,%s,%s,%s,%s)
                """,
                (
                    int(organization_id),
                    int(user_id),
                    int(leave_type_id),
                    start_date,
                    end_date,
                    days_requested,
                    reason,
                    status.value,
                ),
            )
            return int(cur.lastrowid)

    def get_request(self, *, request_id: int) -> Optional[LeaveRequest]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_REQUEST_COLUMNS} FROM leave_requests WHERE request_id=%s", (int(request_id),))
            r = fetchone(cur)
            return _row_to_request(r) if r else None

    def list_requests(
        self,
        *,
        organization_id: int,
        user_id: Optional[int] = None,
        status: Optional[LeaveRequestStatus] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        clauses = ["lr.organization_id=%s"]
        params: list[object] = [int(organization_id)]
        if user_id is not None:
            clauses.append("lr.user_id=%s")
            params.append(int(user_id))
        if status is not None:
            clauses.append("lr.status=%s")
            params.append(status.value)

        where = " AND ".join(clauses)
        params.append(int(limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT lr.request_id, lr.user_id, u.full_name, u.email,
                       lr.leave_type_id, lt.name AS leave_type_name,
                       lr.start_date, lr.end_date, lr.days_requested, lr.reason, lr.status,
                       lr.reviewed_by, lr.reviewed_at, lr.rejection_reason, lr.created_at
                FROM leave_requests lr
                JOIN users u ON u.user_id = lr.user_id
                JOIN leave_types lt ON lt.leave_type_id = lr.leave_type_id
                WHERE {where}
                ORDER BY lr.start_date DESC, lr.request_id DESC
                LIMIT %s
                """,
                tuple(params),
            )
            out: list[dict] = []
            for r in fetchall(cur):
                out.append(
                    {
                        "request_id": int(r["request_id"]),
                        "user_id": int(r["user_id"]),
                        "full_name": r["full_name"],
                        "email": r["email"],
                        "leave_type_id": int(r["leave_type_id"]),
                        "leave_type_name": r["leave_type_name"],
                        "start_date": r["start_date"].isoformat(),
                        "end_date": r["end_date"].isoformat(),
                        "days_requested": as_float(r["days_requested"]),
                        "reason": r.get("reason"),
                        "status": r["status"],
                        "reviewed_by": r.get("reviewed_by"),
                        "reviewed_at": r["reviewed_at"].isoformat() if r.get("reviewed_at") else None,
                        "rejection_reason": r.get("rejection_reason"),
                        "created_at": r["created_at"].isoformat() if r.get("created_at") else None,
                    }
                )
            return out

    def find_overlapping(
        self,
        *,
        organization_id: int,
        user_id: int,
        start_date: date,
        end_date: date,
        exclude_request_id: Optional[int] = None,
    ) -> Sequence[LeaveRequest]:
        clauses = [
            "organization_id=%s",
            "user_id=%s",
            "status IN (%s, %s)",
            "start_date <= %s",
            "end_date >= %s",
        ]
        params: list[object] = [
            int(organization_id),
            int(user_id),
            LeaveRequestStatus.PENDING.value,
            LeaveRequestStatus.APPROVED.value,
            end_date,
            start_date,
        ]
        if exclude_request_id is not None:
            clauses.append("request_id <> %s")
            params.append(int(exclude_request_id))

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_REQUEST_COLUMNS} FROM leave_requests WHERE {where}", tuple(params))
            return [_row_to_request(r) for r in fetchall(cur)]

    def decide_request(
        self,
        *,
        request_id: int,
        status: LeaveRequestStatus,
        reviewed_by: int,
        reviewed_at: datetime,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE leave_requests
                SET status=%s, reviewed_by=%s, reviewed_at=%s, rejection_reason=%s
                WHERE request_id=%s AND status=%s
                """,
                (
                    status.value,
                    int(reviewed_by),
                    reviewed_at,
                    rejection_reason,
                    int(request_id),
                    LeaveRequestStatus.PENDING.value,
                ),
            )
            return cur.rowcount > 0

    def set_request_status(self, *, request_id: int, status: LeaveRequestStatus) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE leave_requests SET status=%s WHERE request_id=%s",
                (status.value, int(request_id)),
            )
            return cur.rowcount > 0

    def update_request(
        self,
        *,
        request_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        days_requested: float,
        reason: Optional[str],
        edited_by: Optional[int] = None,
        edited_at: Optional[datetime] = None,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE leave_requests
                SET leave_type_id=%s, start_date=%s, end_date=%s, days_requested=%s, reason=%s,
                    edited_by=COALESCE(%s, edited_by), edited_at=COALESCE(%s, edited_at)
                WHERE request_id=%s
                """,
                (
                    int(leave_type_id),
                    start_date,
                    end_date,
                    days_requested,
                    reason,
                    edited_by,
                    edited_at,
                    int(request_id),
                ),
            )
            return cur.rowcount > 0
