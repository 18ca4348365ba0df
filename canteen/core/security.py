"""
调用方身份解析
令牌由认证服务签发，这里只负责校验 JWT 并取出 person_id / is_admin
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config.settings import settings
from .exceptions import AuthenticationError, AuthorizationError


@dataclass(frozen=True)
class CurrentActor:
    person_id: str
    is_admin: bool = False


class SecurityManager:
    """安全管理器"""

    def __init__(self, secret: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret = secret or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm

    def create_jwt_token(self, person_id: str, is_admin: bool = False,
                         additional_claims: Dict[str, Any] = None) -> str:
        """创建JWT token（供测试和运维工具使用）"""
        now = datetime.now(timezone.utc)
        payload = {
            "person_id": person_id,
            "is_admin": is_admin,
            "exp": now + timedelta(hours=settings.jwt_expire_hours),
            "iat": now,
        }
        if additional_claims:
            payload.update(additional_claims)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode_jwt_token(self, token: str) -> Dict[str, Any]:
        """解码JWT token"""
        try:
            return jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    def actor_from_token(self, token: str) -> CurrentActor:
        payload = self.decode_jwt_token(token)
        person_id = payload.get("person_id")
        if not person_id:
            raise AuthenticationError("Token missing person_id")
        return CurrentActor(person_id=str(person_id), is_admin=bool(payload.get("is_admin", False)))


security_manager = SecurityManager()
_bearer = HTTPBearer(auto_error=False)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> CurrentActor:
    """FastAPI 依赖：从 Bearer token 解析当前调用方"""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return security_manager.actor_from_token(credentials.credentials)


def require_admin(actor: CurrentActor = Depends(get_current_actor)) -> CurrentActor:
    """FastAPI 依赖：要求管理员身份"""
    if not actor.is_admin:
        raise AuthorizationError("需要管理员权限")
    return actor
