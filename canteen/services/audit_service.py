"""
就餐确认日志服务
确认日志只追加、不修改、不删除，每个 (reservation_id, person_id) 至多一条

主要功能：
- append: 在调用方事务内写入一条日志，唯一索引作为最后一道防线
- query: 按时间倒序惰性分页读取，每次调用都重新查询当前数据
"""

from datetime import datetime
from typing import Iterator, List, Optional, Tuple

import duckdb

from ..core.clock import from_storage, to_storage
from ..core.database import DatabaseManager
from ..core.exceptions import AlreadyConfirmedError, DatabaseError
from ..models.confirmation import AuditFilter, ConfirmationChannel, ConfirmationLogEntry

_LOG_COLUMNS = "id, reservation_id, person_id, actor_id, channel, confirmed_at, note"


class AuditService:

    def __init__(self, db: DatabaseManager, page_size: int = 100):
        self.db = db
        self.page_size = page_size

    def exists(self, conn: duckdb.DuckDBPyConnection, reservation_id: int, person_id: str) -> bool:
        row = conn.execute(
            "SELECT 1 FROM confirmation_logs WHERE reservation_id=? AND person_id=?",
            [reservation_id, person_id],
        ).fetchone()
        return row is not None

    def append(self, conn: duckdb.DuckDBPyConnection, reservation_id: int, person_id: str,
               actor_id: str, channel: ConfirmationChannel, timestamp: datetime,
               note: Optional[str] = None) -> ConfirmationLogEntry:
        """
        写入一条确认日志

        Raises:
            AlreadyConfirmedError: 该成员已有确认日志
        """
        if self.exists(conn, reservation_id, person_id):
            raise AlreadyConfirmedError(reservation_id, person_id)
        try:
            row = conn.execute(
                "INSERT INTO confirmation_logs(reservation_id, person_id, actor_id, channel, confirmed_at, note) "
                f"VALUES (?,?,?,?,?,?) RETURNING {_LOG_COLUMNS}",
                [reservation_id, person_id, actor_id, ConfirmationChannel(channel).value,
                 to_storage(timestamp), note],
            ).fetchone()
        except duckdb.ConstraintException as e:
            raise AlreadyConfirmedError(reservation_id, person_id) from e
        return self._row_to_entry(row)

    def query(self, audit_filter: Optional[AuditFilter] = None) -> Iterator[ConfirmationLogEntry]:
        """
        按确认时间倒序读取日志（时间相同按ID倒序）

        返回生成器，按页查询，不在两页之间持有锁；
        每次调用 query 都从头重新执行，不是实时订阅。
        """
        audit_filter = audit_filter or AuditFilter()
        clauses, params = self._build_where(audit_filter)
        remaining = audit_filter.limit
        last_key: Optional[Tuple[datetime, int]] = None

        while True:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            if size <= 0:
                return

            page_clauses = list(clauses)
            page_params = list(params)
            if last_key is not None:
                page_clauses.append("(confirmed_at < ? OR (confirmed_at = ? AND id < ?))")
                page_params.extend([last_key[0], last_key[0], last_key[1]])

            where = f"WHERE {' AND '.join(page_clauses)}" if page_clauses else ""
            rows = self.db.execute_query(
                f"SELECT {_LOG_COLUMNS} FROM confirmation_logs {where} "
                "ORDER BY confirmed_at DESC, id DESC LIMIT ?",
                page_params + [size],
            )

            for row in rows:
                yield self._row_to_entry(row)

            if len(rows) < size:
                return
            if remaining is not None:
                remaining -= len(rows)
            last_key = (rows[-1][5], rows[-1][0])

    def list_entries(self, audit_filter: Optional[AuditFilter] = None) -> List[ConfirmationLogEntry]:
        return list(self.query(audit_filter))

    @staticmethod
    def _build_where(audit_filter: AuditFilter):
        clauses: List[str] = []
        params: list = []
        if audit_filter.reservation_id is not None:
            clauses.append("reservation_id = ?")
            params.append(audit_filter.reservation_id)
        if audit_filter.person_id:
            clauses.append("person_id = ?")
            params.append(audit_filter.person_id)
        if audit_filter.actor_id:
            clauses.append("actor_id = ?")
            params.append(audit_filter.actor_id)
        if audit_filter.channel is not None:
            clauses.append("channel = ?")
            params.append(ConfirmationChannel(audit_filter.channel).value)
        if audit_filter.since is not None:
            clauses.append("confirmed_at >= ?")
            params.append(to_storage(audit_filter.since))
        if audit_filter.until is not None:
            clauses.append("confirmed_at < ?")
            params.append(to_storage(audit_filter.until))
        return clauses, params

    @staticmethod
    def _row_to_entry(row) -> ConfirmationLogEntry:
        if row is None:
            raise DatabaseError("确认日志写入失败")
        return ConfirmationLogEntry(
            id=row[0],
            reservation_id=row[1],
            person_id=row[2],
            actor_id=row[3],
            channel=row[4],
            timestamp=from_storage(row[5]),
            note=row[6],
        )
