"""
就餐确认服务模块
把"已报餐"的成员原子地转换为"已就餐"，并写入确认日志

确认方式：
- self: 本人（或报餐人）按报餐ID确认，不限制时段
- admin: 管理员代确认，支持批量
- badge: 扫码/刷工牌，餐次由服务器时钟决定，日期为参考时区的今天

事务内步骤：
1. 查找可确认的报餐（待确认/已确认，成员未取消）
2. 找不到 -> NotReservedError
3. 已有确认日志 -> AlreadyConfirmedError
4. 条件更新成员状态 reserved -> consumed，影响行数为 0 -> AlreadyConfirmedError
5. 写入确认日志（唯一索引兜底）
6. 提交；任何失败整体回滚
"""

import logging
from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple, Union

import duckdb

from ..core.civil_date import civil_date_of, parse_civil_date
from ..core.clock import Clock, from_storage, to_reference, to_storage
from ..core.database import DatabaseManager
from ..core.exceptions import (
    AlreadyConfirmedError,
    BaseApplicationError,
    NotReservedError,
    OutsideMealWindowError,
    PermissionDeniedError,
    PersonNotFoundError,
)
from ..models.badge import BadgeToken
from ..models.confirmation import (
    BatchConfirmationResult,
    BatchItemError,
    ConfirmationChannel,
    ConfirmationResult,
    DailyStats,
    MealCounts,
    MealStatus,
    PersonDayStatus,
)
from ..models.person import PersonInfo
from ..models.reservation import ELIGIBLE_LIFECYCLE, MealCategory
from . import meal_window
from .audit_service import AuditService
from .badge_service import BadgeService
from .directory import Directory

logger = logging.getLogger(__name__)

_ELIGIBLE = "r.lifecycle_status IN (%s) AND m.consumption_status != 'cancelled'" % ",".join(
    f"'{s.value}'" for s in ELIGIBLE_LIFECYCLE
)
_CANDIDATE_COLUMNS = "r.id, r.requester_id, r.meal_date, r.meal_category"


class ConfirmationService:
    """就餐确认服务类"""

    def __init__(self, db: DatabaseManager, directory: Directory, clock: Clock,
                 audit: AuditService, badges: BadgeService):
        self.db = db
        self.directory = directory
        self.clock = clock
        self.audit = audit
        self.badges = badges

    def confirm_self(self, reservation_id: int, person_id: str, actor_id: str,
                     note: Optional[str] = None) -> ConfirmationResult:
        """
        本人确认就餐

        Args:
            reservation_id: 报餐ID
            person_id: 就餐人ID
            actor_id: 操作人ID，必须是就餐人本人或报餐人
            note: 备注

        Raises:
            PersonNotFoundError: 就餐人不存在或已停用
            NotReservedError: 就餐人不在该报餐中或报餐不可确认
            PermissionDeniedError: 操作人既不是本人也不是报餐人
            AlreadyConfirmedError: 已确认过
        """
        self._require_person(person_id)
        return self._confirm(
            person_id=person_id,
            actor_id=actor_id,
            channel=ConfirmationChannel.SELF,
            note=note or "用户手动确认就餐",
            reservation_id=reservation_id,
        )

    def confirm_admin(self, reservation_id: int, person_id: str, actor_id: str,
                      note: Optional[str] = None) -> ConfirmationResult:
        """管理员代确认就餐（管理员身份由上层校验）"""
        self._require_person(person_id)
        return self._confirm(
            person_id=person_id,
            actor_id=actor_id,
            channel=ConfirmationChannel.ADMIN,
            note=note or "管理员代确认就餐",
            reservation_id=reservation_id,
        )

    def confirm_admin_batch(self, items: Iterable[Tuple[int, str]], actor_id: str,
                            note: Optional[str] = None) -> BatchConfirmationResult:
        """
        批量代确认，每一项独立事务，单项失败不影响其他项

        Args:
            items: (reservation_id, person_id) 列表
        """
        result = BatchConfirmationResult()
        for reservation_id, person_id in items:
            result.total_count += 1
            try:
                confirmed = self.confirm_admin(reservation_id, person_id, actor_id, note)
            except BaseApplicationError as e:
                result.errors.append(BatchItemError(
                    reservation_id=reservation_id,
                    person_id=person_id,
                    error_code=e.error_code,
                    message=e.message,
                    details=e.details,
                ))
                continue
            result.results.append(confirmed)
            result.success_count += 1

        logger.info(
            "batch confirmation by %s: %d/%d succeeded",
            actor_id, result.success_count, result.total_count,
        )
        return result

    def confirm_by_badge(self, token_code: str, scanner_id: Optional[str] = None,
                         note: Optional[str] = None) -> ConfirmationResult:
        """
        扫码/刷工牌确认就餐

        餐次由服务器当前时间决定，日期为参考时区的今天，调用方无法指定。

        Args:
            token_code: 扫码内容
            scanner_id: 扫码人ID（场所二维码必填，个人工牌可空）
            note: 备注

        Raises:
            TokenInvalidError / TokenRevokedError: 令牌无效或已停用
            OutsideMealWindowError: 当前不在就餐时段，不改动任何数据
            PersonNotFoundError: 就餐人不存在或已停用
            NotReservedError: 今天该餐次未报餐
            AlreadyConfirmedError: 已确认过
        """
        token = self.badges.validate(token_code)
        person_id = self.badges.resolve_holder(token, scanner_id)

        now = self.clock.now()
        category = meal_window.resolve(now)
        if category is None:
            raise OutsideMealWindowError(
                to_reference(now).strftime("%Y-%m-%d %H:%M:%S"),
                [meal_window.describe_window(c) for c in MealCategory],
            )

        self._require_person(person_id)
        return self._confirm(
            person_id=person_id,
            actor_id=scanner_id or person_id,
            channel=ConfirmationChannel.BADGE,
            note=note or self._badge_note(token),
            meal_date=civil_date_of(now),
            meal_category=category,
            token=token,
            now=now,
        )

    def get_status(self, meal_date: Union[str, date], person_id: str) -> PersonDayStatus:
        """查询某人某天各餐次的报餐和就餐状态"""
        meal_date = parse_civil_date(meal_date)
        person = self._require_person(person_id)

        rows = self.db.execute_query(
            "SELECT r.id, r.meal_category, r.lifecycle_status, m.consumption_status, "
            "m.consumed_at, r.remark "
            "FROM reservations r JOIN reservation_members m ON m.reservation_id = r.id "
            "WHERE r.meal_date=? AND m.person_id=? AND r.lifecycle_status != 'cancelled' "
            "ORDER BY r.id",
            [meal_date, person_id],
        )

        meals: Dict[str, MealStatus] = {
            c.value: MealStatus(meal_category=c) for c in MealCategory
        }
        for rid, category, lifecycle, consumption, consumed_at, remark in rows:
            meals[category] = MealStatus(
                meal_category=category,
                registered=True,
                reservation_id=rid,
                lifecycle_status=lifecycle,
                consumption_status=consumption,
                consumed_at=from_storage(consumed_at),
                remark=remark,
            )

        registered = [s for s in meals.values() if s.registered]
        summary = {
            "total_registered": len(registered),
            "total_consumed": sum(1 for s in registered if s.consumption_status == "consumed"),
            "pending_confirmation": sum(1 for s in registered if s.consumption_status == "reserved"),
            "unregistered": len(meals) - len(registered),
        }
        return PersonDayStatus(
            person_id=person_id,
            name=person.name,
            meal_date=meal_date,
            meals=meals,
            summary=summary,
        )

    def get_daily_stats(self, meal_date: Union[str, date],
                        department_id: Optional[str] = None) -> DailyStats:
        """按餐次统计某天成员的报餐/就餐/取消人数"""
        meal_date = parse_civil_date(meal_date)
        sql = (
            "SELECT r.meal_category, m.consumption_status, COUNT(*) "
            "FROM reservations r JOIN reservation_members m ON m.reservation_id = r.id "
            "WHERE r.meal_date=?"
        )
        params: list = [meal_date]
        if department_id:
            sql += " AND r.department_id=?"
            params.append(department_id)
        sql += " GROUP BY r.meal_category, m.consumption_status"

        categories = {c.value: MealCounts() for c in MealCategory}
        total = MealCounts()
        for category, status, count in self.db.execute_query(sql, params):
            counts = categories[category]
            setattr(counts, status, getattr(counts, status) + count)
            setattr(total, status, getattr(total, status) + count)

        return DailyStats(
            meal_date=meal_date,
            department_id=department_id,
            categories=categories,
            total=total,
        )

    # ==================== 私有方法 ====================

    def _require_person(self, person_id: str) -> PersonInfo:
        person = self.directory.resolve_person(person_id) if person_id else None
        if person is None or not person.active:
            raise PersonNotFoundError(person_id)
        return person

    def _confirm(self, *, person_id: str, actor_id: str, channel: ConfirmationChannel,
                 note: str, reservation_id: Optional[int] = None,
                 meal_date: Optional[date] = None,
                 meal_category: Optional[MealCategory] = None,
                 token: Optional[BadgeToken] = None,
                 now: Optional[datetime] = None) -> ConfirmationResult:
        """确认就餐的事务主体，三种确认方式共用"""
        try:
            with self.db.transaction() as conn:
                candidate = self._find_candidate(
                    conn, person_id, reservation_id, meal_date, meal_category
                )
                if candidate is None:
                    raise NotReservedError(
                        person_id,
                        reservation_id=reservation_id,
                        meal_date=meal_date.isoformat() if meal_date else None,
                        meal_category=meal_category.value if meal_category else None,
                    )
                rid, requester_id, found_date, found_category = candidate

                if channel == ConfirmationChannel.SELF and actor_id not in (person_id, requester_id):
                    raise PermissionDeniedError(actor_id, rid)

                if self.audit.exists(conn, rid, person_id):
                    raise AlreadyConfirmedError(rid, person_id)

                consumed_at = now or self.clock.now()
                stored = to_storage(consumed_at)
                updated = conn.execute(
                    "UPDATE reservation_members SET consumption_status='consumed', consumed_at=? "
                    "WHERE reservation_id=? AND person_id=? AND consumption_status='reserved' "
                    "RETURNING person_id",
                    [stored, rid, person_id],
                ).fetchall()
                if not updated:
                    raise AlreadyConfirmedError(rid, person_id)

                conn.execute(
                    "UPDATE reservations SET consumption_status='consumed', consumption_timestamp=?, "
                    "updated_at=? WHERE id=? AND consumption_status='reserved'",
                    [stored, stored, rid],
                )

                if token is not None and token.is_single_use:
                    self.badges.mark_used(conn, token)

                entry = self.audit.append(
                    conn, rid, person_id, actor_id, channel, consumed_at, note
                )
        except (NotReservedError, AlreadyConfirmedError) as e:
            logger.info("confirmation rejected (%s): %s", e.error_code, e.details)
            raise

        logger.info(
            "reservation %s: %s consumed via %s by %s", rid, person_id, channel.value, actor_id
        )
        return ConfirmationResult(
            reservation_id=rid,
            person_id=person_id,
            actor_id=actor_id,
            channel=channel,
            meal_date=found_date,
            meal_category=found_category,
            consumed_at=consumed_at,
            log_id=entry.id,
        )

    @staticmethod
    def _find_candidate(conn: duckdb.DuckDBPyConnection, person_id: str,
                        reservation_id: Optional[int], meal_date: Optional[date],
                        meal_category: Optional[MealCategory]):
        base = (
            f"SELECT {_CANDIDATE_COLUMNS} FROM reservations r "
            "JOIN reservation_members m ON m.reservation_id = r.id "
            f"WHERE m.person_id=? AND {_ELIGIBLE}"
        )
        if reservation_id is not None:
            return conn.execute(f"{base} AND r.id=?", [person_id, reservation_id]).fetchone()
        return conn.execute(
            f"{base} AND r.meal_date=? AND r.meal_category=? ORDER BY r.id LIMIT 1",
            [person_id, meal_date, meal_category.value],
        ).fetchone()

    @staticmethod
    def _badge_note(token: BadgeToken) -> str:
        if token.location:
            return f"扫码确认就餐 - {token.location}"
        return f"扫码确认就餐 - {token.code}"
