"""
报餐服务模块
提供部门报餐的提交、取消、审核、完成和查询

主要功能：
- 报餐提交：日期、名单、部门校验，同餐次重复报餐检查
- 报餐取消：仅在尚未就餐时允许
- 状态流转：待确认 -> 已确认 -> 已完成

业务规则：
- 不能为过去的日期报餐（按参考时区的"今天"比较日历日期）
- 报餐名单不能为空、不能重复，成员必须与报餐人同部门
- 同一日期同一餐次，一个人只能出现在一条未取消的报餐中
- 冲突检查与写入在同一事务内完成
- 菜单是否发布不影响报餐
"""

import logging
from collections import Counter
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Union

import duckdb

from ..core.civil_date import is_past, parse_civil_date, today
from ..core.clock import Clock, from_storage, to_storage
from ..core.database import DatabaseManager
from ..core.exceptions import (
    CrossDepartmentError,
    EmptyMembersError,
    InternalDuplicateError,
    InvalidInputError,
    MemberAlreadyReservedError,
    MemberNotFoundError,
    PastDateError,
    PersonNotFoundError,
    ReservationNotFoundError,
    ReservationStateError,
)
from ..models.reservation import (
    ConsumptionStatus,
    LifecycleStatus,
    MealCategory,
    Reservation,
    ReservationMember,
)
from .directory import Directory, MenuCatalog

logger = logging.getLogger(__name__)

_RESERVATION_COLUMNS = (
    "id, department_id, requester_id, meal_date, meal_category, lifecycle_status, "
    "consumption_status, consumption_timestamp, menu_id, remark, created_at, updated_at"
)

# 管理端状态流转：目标状态 -> 允许的当前状态
_TRANSITIONS = {
    LifecycleStatus.CONFIRMED: (LifecycleStatus.PENDING,),
    LifecycleStatus.COMPLETED: (LifecycleStatus.PENDING, LifecycleStatus.CONFIRMED),
}


def parse_meal_category(value: Union[str, MealCategory]) -> MealCategory:
    try:
        return MealCategory(value)
    except ValueError:
        raise InvalidInputError("餐次类型不正确", "meal_category", value)


class ReservationService:
    """报餐服务类，封装报餐相关的业务逻辑"""

    def __init__(self, db: DatabaseManager, directory: Directory, clock: Clock,
                 menu_catalog: Optional[MenuCatalog] = None):
        self.db = db
        self.directory = directory
        self.clock = clock
        self.menu_catalog = menu_catalog

    def submit(self, requester_id: str, meal_date: Union[str, date],
               meal_category: Union[str, MealCategory], member_ids: Sequence[str],
               remark: Optional[str] = None) -> Reservation:
        """
        提交部门报餐

        Args:
            requester_id: 报餐人ID
            meal_date: 就餐日期（YYYY-MM-DD 或 date）
            meal_category: 餐次
            member_ids: 报餐成员ID列表（保留顺序）
            remark: 备注

        Returns:
            Reservation: 新建的报餐记录（pending / reserved）

        Raises:
            PastDateError: 日期早于今天
            EmptyMembersError / InternalDuplicateError: 名单为空或内部重复
            PersonNotFoundError: 报餐人不存在或无部门
            MemberNotFoundError / CrossDepartmentError: 成员不存在或跨部门
            MemberAlreadyReservedError: 成员在该餐次已有报餐
        """
        meal_date = parse_civil_date(meal_date)
        category = parse_meal_category(meal_category)

        # 1. 日期校验
        if is_past(meal_date, self.clock):
            raise PastDateError(meal_date, today(self.clock))

        # 2. 名单校验
        members = self._normalize_members(member_ids)

        # 3. 报餐人及部门
        department_id = self._requester_department(requester_id)

        # 4. 成员存在且同部门
        self._check_members(members, department_id)

        menu_id = self._find_menu(meal_date, category)

        # 5. 冲突检查与写入
        with self.db.transaction() as conn:
            conflicts = self._reserved_members(conn, meal_date, category) & set(members)
            if conflicts:
                raise MemberAlreadyReservedError(conflicts, meal_date, category.value)

            now = to_storage(self.clock.now())
            row = conn.execute(
                "INSERT INTO reservations(department_id, requester_id, meal_date, meal_category, "
                "lifecycle_status, consumption_status, menu_id, remark, created_at, updated_at) "
                "VALUES (?,?,?,?,?,?,?,?,?,?) RETURNING id",
                [department_id, requester_id, meal_date, category.value,
                 LifecycleStatus.PENDING.value, ConsumptionStatus.RESERVED.value,
                 menu_id, remark or "", now, now],
            ).fetchone()
            reservation_id = row[0]

            conn.executemany(
                "INSERT INTO reservation_members(reservation_id, person_id, position, consumption_status) "
                "VALUES (?,?,?,?)",
                [[reservation_id, person_id, position, ConsumptionStatus.RESERVED.value]
                 for position, person_id in enumerate(members)],
            )
            reservation = self._load(conn, reservation_id)

        logger.info(
            "reservation %s submitted by %s: %s %s, %d members",
            reservation_id, requester_id, meal_date.isoformat(), category.value, len(members),
        )
        return reservation

    def cancel(self, reservation_id: int, actor_id: str, reason: Optional[str] = None) -> Reservation:
        """
        取消报餐，仅在未就餐时允许

        Raises:
            ReservationNotFoundError: 报餐不存在
            ReservationStateError: 已就餐、已完成或已取消
        """
        with self.db.transaction() as conn:
            current = self._load(conn, reservation_id)
            now = to_storage(self.clock.now())
            rows = conn.execute(
                "UPDATE reservations SET lifecycle_status='cancelled', consumption_status='cancelled', "
                "updated_at=? WHERE id=? AND consumption_status='reserved' "
                "AND lifecycle_status IN ('pending','confirmed') RETURNING id",
                [now, reservation_id],
            ).fetchall()
            if not rows:
                raise ReservationStateError(
                    reservation_id, "cancel",
                    current.lifecycle_status.value, current.consumption_status.value,
                )
            conn.execute(
                "UPDATE reservation_members SET consumption_status='cancelled' WHERE reservation_id=?",
                [reservation_id],
            )
            reservation = self._load(conn, reservation_id)

        logger.info("reservation %s cancelled by %s: %s", reservation_id, actor_id, reason or "-")
        return reservation

    def approve(self, reservation_id: int, actor_id: str) -> Reservation:
        """审核报餐：pending -> confirmed"""
        return self._transition(reservation_id, LifecycleStatus.CONFIRMED, actor_id)

    def complete(self, reservation_id: int, actor_id: str) -> Reservation:
        """结束报餐：pending/confirmed -> completed，之后不再接受就餐确认"""
        return self._transition(reservation_id, LifecycleStatus.COMPLETED, actor_id)

    def get(self, reservation_id: int) -> Reservation:
        with self.db.transaction() as conn:
            return self._load(conn, reservation_id)

    def list_reservations(self, meal_date: Union[str, date],
                          meal_category: Union[str, MealCategory, None] = None,
                          department_id: Optional[str] = None) -> List[Reservation]:
        meal_date = parse_civil_date(meal_date)
        clauses = ["meal_date = ?"]
        params: list = [meal_date]
        if meal_category is not None:
            clauses.append("meal_category = ?")
            params.append(parse_meal_category(meal_category).value)
        if department_id:
            clauses.append("department_id = ?")
            params.append(department_id)

        with self.db.transaction() as conn:
            rows = conn.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE {' AND '.join(clauses)} "
                "ORDER BY id",
                params,
            ).fetchall()
            members = self._load_members(conn, [r[0] for r in rows])
        return [self._row_to_reservation(r, members.get(r[0], [])) for r in rows]

    # ==================== 私有方法 ====================

    @staticmethod
    def _normalize_members(member_ids: Optional[Sequence[str]]) -> List[str]:
        if not member_ids:
            raise EmptyMembersError()
        members = []
        for person_id in member_ids:
            if not isinstance(person_id, str) or not person_id.strip():
                raise InvalidInputError("成员ID不能为空", "member_ids", person_id)
            members.append(person_id.strip())
        duplicates = [pid for pid, count in Counter(members).items() if count > 1]
        if duplicates:
            raise InternalDuplicateError(duplicates)
        return members

    def _requester_department(self, requester_id: str) -> str:
        requester = self.directory.resolve_person(requester_id)
        if requester is None or not requester.active:
            raise PersonNotFoundError(requester_id)
        department_id = self.directory.resolve_department(requester_id)
        if not department_id:
            raise PersonNotFoundError(requester_id)
        return department_id

    def _check_members(self, members: Iterable[str], department_id: str) -> None:
        missing = []
        foreign = []
        for person_id in members:
            person = self.directory.resolve_person(person_id)
            if person is None or not person.active:
                missing.append(person_id)
            elif self.directory.resolve_department(person_id) != department_id:
                foreign.append(person_id)
        if missing:
            raise MemberNotFoundError(missing)
        if foreign:
            raise CrossDepartmentError(foreign, department_id)

    def _find_menu(self, meal_date: date, category: MealCategory) -> Optional[str]:
        """查询已发布菜单，菜单缺失或查询失败都不影响报餐"""
        if self.menu_catalog is None:
            return None
        try:
            return self.menu_catalog.find_published_menu(meal_date, category)
        except Exception as e:
            logger.warning(
                "menu lookup failed for %s %s: %s", meal_date.isoformat(), category.value, e
            )
            return None

    @staticmethod
    def _reserved_members(conn: duckdb.DuckDBPyConnection, meal_date: date,
                          category: MealCategory) -> set:
        rows = conn.execute(
            "SELECT m.person_id FROM reservation_members m "
            "JOIN reservations r ON r.id = m.reservation_id "
            "WHERE r.meal_date=? AND r.meal_category=? AND r.lifecycle_status != 'cancelled'",
            [meal_date, category.value],
        ).fetchall()
        return {r[0] for r in rows}

    def _transition(self, reservation_id: int, target: LifecycleStatus, actor_id: str) -> Reservation:
        allowed = _TRANSITIONS[target]
        placeholders = ",".join("?" for _ in allowed)
        with self.db.transaction() as conn:
            current = self._load(conn, reservation_id)
            rows = conn.execute(
                f"UPDATE reservations SET lifecycle_status=?, updated_at=? "
                f"WHERE id=? AND lifecycle_status IN ({placeholders}) RETURNING id",
                [target.value, to_storage(self.clock.now()), reservation_id]
                + [s.value for s in allowed],
            ).fetchall()
            if not rows:
                raise ReservationStateError(
                    reservation_id, target.value,
                    current.lifecycle_status.value, current.consumption_status.value,
                )
            reservation = self._load(conn, reservation_id)

        logger.info("reservation %s -> %s by %s", reservation_id, target.value, actor_id)
        return reservation

    def _load(self, conn: duckdb.DuckDBPyConnection, reservation_id: int) -> Reservation:
        row = conn.execute(
            f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id=?", [reservation_id]
        ).fetchone()
        if not row:
            raise ReservationNotFoundError(reservation_id)
        members = self._load_members(conn, [reservation_id])
        return self._row_to_reservation(row, members.get(reservation_id, []))

    @staticmethod
    def _load_members(conn: duckdb.DuckDBPyConnection,
                      reservation_ids: List[int]) -> Dict[int, List[ReservationMember]]:
        if not reservation_ids:
            return {}
        placeholders = ",".join("?" for _ in reservation_ids)
        rows = conn.execute(
            "SELECT reservation_id, person_id, consumption_status, consumed_at "
            f"FROM reservation_members WHERE reservation_id IN ({placeholders}) "
            "ORDER BY reservation_id, position",
            list(reservation_ids),
        ).fetchall()
        members: Dict[int, List[ReservationMember]] = {}
        for rid, person_id, status, consumed_at in rows:
            members.setdefault(rid, []).append(ReservationMember(
                person_id=person_id,
                consumption_status=status,
                consumed_at=from_storage(consumed_at),
            ))
        return members

    @staticmethod
    def _row_to_reservation(row, members: List[ReservationMember]) -> Reservation:
        return Reservation(
            id=row[0],
            department_id=row[1],
            requester_id=row[2],
            members=members,
            meal_date=row[3],
            meal_category=row[4],
            lifecycle_status=row[5],
            consumption_status=row[6],
            consumption_timestamp=from_storage(row[7]),
            menu_id=row[8],
            remark=row[9],
            created_at=from_storage(row[10]),
            updated_at=from_storage(row[11]),
        )
