"""
就餐确认路由模块
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...core.error_handler import create_success_response
from ...core.exceptions import AuthorizationError
from ...core.security import CurrentActor, get_current_actor, require_admin
from ...models.confirmation import AuditFilter, ConfirmationChannel
from ...schemas.common import ApiResponse
from ...schemas.confirmation import (
    AdminBatchConfirmRequest,
    AdminConfirmRequest,
    BadgeConfirmRequest,
    SelfConfirmRequest,
)
from ...services import ServiceContainer
from ..dependencies import get_services

router = APIRouter()


@router.post("/self", response_model=ApiResponse)
def confirm_self(req: SelfConfirmRequest,
                 actor: CurrentActor = Depends(get_current_actor),
                 services: ServiceContainer = Depends(get_services)):
    """本人（或报餐人代本人）确认就餐"""
    result = services.confirmations.confirm_self(
        reservation_id=req.reservation_id,
        person_id=req.person_id or actor.person_id,
        actor_id=actor.person_id,
        note=req.note,
    )
    return create_success_response(result.model_dump(mode="json"), "确认就餐成功")


@router.post("/admin", response_model=ApiResponse)
def confirm_admin(req: AdminConfirmRequest,
                  actor: CurrentActor = Depends(require_admin),
                  services: ServiceContainer = Depends(get_services)):
    """管理员代确认就餐"""
    result = services.confirmations.confirm_admin(
        reservation_id=req.reservation_id,
        person_id=req.person_id,
        actor_id=actor.person_id,
        note=req.note,
    )
    return create_success_response(result.model_dump(mode="json"), "代确认就餐成功")


@router.post("/admin/batch", response_model=ApiResponse)
def confirm_admin_batch(req: AdminBatchConfirmRequest,
                        actor: CurrentActor = Depends(require_admin),
                        services: ServiceContainer = Depends(get_services)):
    """批量代确认就餐，单项失败不影响其他项"""
    result = services.confirmations.confirm_admin_batch(
        [(item.reservation_id, item.person_id) for item in req.items],
        actor_id=actor.person_id,
        note=req.note,
    )
    return create_success_response(
        result.model_dump(mode="json"),
        f"批量确认完成：成功 {result.success_count}/{result.total_count}",
    )


@router.post("/badge", response_model=ApiResponse)
def confirm_by_badge(req: BadgeConfirmRequest,
                     actor: CurrentActor = Depends(get_current_actor),
                     services: ServiceContainer = Depends(get_services)):
    """扫码确认就餐，扫码人为当前登录用户"""
    result = services.confirmations.confirm_by_badge(
        req.token, scanner_id=actor.person_id, note=req.note
    )
    return create_success_response(result.model_dump(mode="json"), "扫码确认就餐成功")


@router.get("/status", response_model=ApiResponse)
def get_status(date: str = Query(..., description="日期 YYYY-MM-DD"),
               person_id: Optional[str] = Query(None, description="人员ID（管理员可查他人）"),
               actor: CurrentActor = Depends(get_current_actor),
               services: ServiceContainer = Depends(get_services)):
    """查询某天各餐次的报餐和就餐状态"""
    target = person_id or actor.person_id
    if target != actor.person_id and not actor.is_admin:
        raise AuthorizationError("只能查询本人的就餐状态")
    status = services.confirmations.get_status(date, target)
    return create_success_response(status.model_dump(mode="json"))


@router.get("/history", response_model=ApiResponse)
def get_history(reservation_id: Optional[int] = Query(None),
                person_id: Optional[str] = Query(None),
                actor_id: Optional[str] = Query(None),
                channel: Optional[ConfirmationChannel] = Query(None),
                since: Optional[datetime] = Query(None, description="起始时间（含，需带时区）"),
                until: Optional[datetime] = Query(None, description="截止时间（不含，需带时区）"),
                limit: int = Query(50, ge=1, le=1000),
                actor: CurrentActor = Depends(get_current_actor),
                services: ServiceContainer = Depends(get_services)):
    """确认日志，按时间倒序；普通用户只能查询本人的记录"""
    if not actor.is_admin:
        if person_id and person_id != actor.person_id:
            raise AuthorizationError("只能查询本人的确认记录")
        person_id = actor.person_id
    audit_filter = AuditFilter(
        reservation_id=reservation_id,
        person_id=person_id,
        actor_id=actor_id,
        channel=channel,
        since=since,
        until=until,
        limit=limit,
    )
    items = [e.model_dump(mode="json") for e in services.audit.query(audit_filter)]
    return create_success_response({"items": items, "count": len(items)})


@router.get("/stats", response_model=ApiResponse)
def get_daily_stats(date: str = Query(..., description="日期 YYYY-MM-DD"),
                    department_id: Optional[str] = Query(None),
                    actor: CurrentActor = Depends(require_admin),
                    services: ServiceContainer = Depends(get_services)):
    """按餐次统计某天报餐/就餐人数（管理员）"""
    stats = services.confirmations.get_daily_stats(date, department_id)
    return create_success_response(stats.model_dump(mode="json"))
