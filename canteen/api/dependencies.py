"""
路由层共用依赖
服务容器在 create_app 时挂到 app.state 上，测试可以注入自己的容器
"""

from fastapi import Request

from ..services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services
