"""
工牌/二维码令牌校验服务

令牌的签发、停用由外部工具负责，本模块只负责：
- 校验令牌存在、未停用、未过期、未使用
- 确定令牌对应的就餐人（个人工牌为持有人，场所二维码为扫码人）
- 在确认就餐事务内把一次性安全令牌标记为已使用
"""

from typing import Optional

import duckdb

from ..core.clock import Clock, from_storage, to_storage
from ..core.database import DatabaseManager
from ..core.exceptions import TokenInvalidError, TokenRevokedError
from ..models.badge import BadgeStatus, BadgeToken

_TOKEN_COLUMNS = "id, code, person_id, location, status, expires_at, used_at"


class BadgeService:

    def __init__(self, db: DatabaseManager, clock: Clock):
        self.db = db
        self.clock = clock

    def validate(self, code: str) -> BadgeToken:
        """
        校验令牌

        Raises:
            TokenInvalidError: 令牌不存在、已过期或已使用
            TokenRevokedError: 令牌已停用
        """
        if not code or not code.strip():
            raise TokenInvalidError("empty", code)

        row = self.db.execute_one(
            f"SELECT {_TOKEN_COLUMNS} FROM badge_tokens WHERE code=?", [code.strip()]
        )
        if not row:
            raise TokenInvalidError("not_found", code)

        token = self._row_to_token(row)
        if token.status == BadgeStatus.REVOKED:
            raise TokenRevokedError(token.code)
        if token.expires_at is not None and token.expires_at <= self.clock.now():
            raise TokenInvalidError("expired", token.code)
        if token.used_at is not None:
            raise TokenInvalidError("used", token.code)
        return token

    @staticmethod
    def resolve_holder(token: BadgeToken, scanner_id: Optional[str]) -> str:
        """个人工牌以持有人为准，场所二维码以扫码人为准"""
        person_id = token.person_id or scanner_id
        if not person_id:
            raise TokenInvalidError("no_holder", token.code)
        return person_id

    def mark_used(self, conn: duckdb.DuckDBPyConnection, token: BadgeToken) -> None:
        """在调用方事务内标记一次性令牌已使用，并发使用时只有一个成功"""
        rows = conn.execute(
            "UPDATE badge_tokens SET used_at=? WHERE id=? AND used_at IS NULL RETURNING id",
            [to_storage(self.clock.now()), token.id],
        ).fetchall()
        if not rows:
            raise TokenInvalidError("used", token.code)

    @staticmethod
    def _row_to_token(row) -> BadgeToken:
        return BadgeToken(
            id=row[0],
            code=row[1],
            person_id=row[2],
            location=row[3],
            status=row[4],
            expires_at=from_storage(row[5]),
            used_at=from_storage(row[6]),
        )
