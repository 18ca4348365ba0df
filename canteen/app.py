"""
食堂报餐服务 - 主应用入口
提供部门报餐、就餐确认和确认日志查询的后端API服务

主要功能模块：
- 部门报餐提交、取消、审核
- 本人/管理员/扫码三种方式确认就餐
- 就餐状态、每日统计和确认日志查询

技术栈：FastAPI + DuckDB + JWT认证
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config.settings import settings
from .core.database import db_manager
from .core.error_handler import (
    application_error_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .core.exceptions import BaseApplicationError
from .core.log import configure_logging
from .services import ServiceContainer, TableDirectory, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    configure_logging(settings)
    services: ServiceContainer = app.state.services
    try:
        services.db.init_database()
        logger.info("database initialized at %s", services.db.db_path)
    except BaseApplicationError as e:
        # 不阻止启动，请求时会再次尝试连接
        logger.error("database initialization failed: %s", e.message)

    yield

    services.db.close()


def default_services() -> ServiceContainer:
    return build_services(
        db_manager,
        TableDirectory(db_manager),
        history_page_size=settings.history_page_size,
    )


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """创建FastAPI应用"""
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="食堂报餐与就餐确认API",
        debug=settings.debug,
        lifespan=lifespan
    )
    app.state.services = services or default_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 注册异常处理器
    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # 注册路由
    app.include_router(api_router, prefix=settings.api_prefix)

    # 健康检查
    @app.get("/health")
    def health_check():
        try:
            app.state.services.db.execute_one("SELECT 1")
            return {
                "status": "healthy",
                "version": settings.api_version,
                "database": "connected"
            }
        except BaseApplicationError as e:
            return {
                "status": "unhealthy",
                "version": settings.api_version,
                "database": f"error: {e.message}"
            }

    @app.get("/")
    async def root():
        return {
            "name": settings.api_title,
            "version": settings.api_version,
            "description": "食堂报餐与就餐确认API"
        }

    return app


# 应用实例
app = create_app()
