"""
数据库连接和管理模块
负责 DuckDB 连接、表结构初始化和事务控制

数据库表说明：
- persons: 人员目录（由外部目录同步维护，本服务只读）
- reservations: 报餐记录
- reservation_members: 报餐成员（一对多，保留名单顺序和每人的就餐状态）
- confirmation_logs: 就餐确认日志，只追加，(reservation_id, person_id) 唯一
- badge_tokens: 工牌/二维码令牌（由外部签发，本服务只校验和标记已使用）

时间字段一律存储不带时区的 UTC 时间，日期字段使用 DATE 类型。
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

import duckdb

from .exceptions import BaseApplicationError, ConcurrencyError, DatabaseError
from ..config.settings import settings

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

# 完整的表结构定义
SCHEMA_SQL = r"""
CREATE TABLE IF NOT EXISTS persons (
  person_id TEXT PRIMARY KEY,
  name TEXT,
  department_id TEXT,
  status TEXT CHECK(status IN ('active','inactive')) NOT NULL DEFAULT 'active'
);

CREATE INDEX IF NOT EXISTS idx_persons_department ON persons(department_id);

CREATE SEQUENCE IF NOT EXISTS reservations_id_seq;
CREATE TABLE IF NOT EXISTS reservations (
  id INTEGER DEFAULT nextval('reservations_id_seq') PRIMARY KEY,
  department_id TEXT NOT NULL,
  requester_id TEXT NOT NULL,
  meal_date DATE NOT NULL,
  meal_category TEXT CHECK(meal_category IN ('breakfast','lunch','dinner')) NOT NULL,
  lifecycle_status TEXT CHECK(lifecycle_status IN ('pending','confirmed','completed','cancelled')) NOT NULL,
  consumption_status TEXT CHECK(consumption_status IN ('reserved','consumed','cancelled')) NOT NULL,
  consumption_timestamp TIMESTAMP,  -- UTC
  menu_id TEXT,
  remark TEXT,
  created_at TIMESTAMP NOT NULL,
  updated_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_reservations_slot ON reservations(meal_date, meal_category);
CREATE INDEX IF NOT EXISTS idx_reservations_department ON reservations(department_id);

CREATE TABLE IF NOT EXISTS reservation_members (
  reservation_id INTEGER NOT NULL,
  person_id TEXT NOT NULL,
  position INTEGER NOT NULL,
  consumption_status TEXT CHECK(consumption_status IN ('reserved','consumed','cancelled')) NOT NULL,
  consumed_at TIMESTAMP,  -- UTC
  PRIMARY KEY (reservation_id, person_id)
);

CREATE INDEX IF NOT EXISTS idx_reservation_members_person ON reservation_members(person_id);

CREATE SEQUENCE IF NOT EXISTS confirmation_logs_id_seq;
CREATE TABLE IF NOT EXISTS confirmation_logs (
  id INTEGER DEFAULT nextval('confirmation_logs_id_seq') PRIMARY KEY,
  reservation_id INTEGER NOT NULL,
  person_id TEXT NOT NULL,
  actor_id TEXT NOT NULL,
  channel TEXT CHECK(channel IN ('self','admin','badge')) NOT NULL,
  confirmed_at TIMESTAMP NOT NULL,  -- UTC
  note TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uniq_confirmation_reservation_person
  ON confirmation_logs(reservation_id, person_id);
CREATE INDEX IF NOT EXISTS idx_confirmation_logs_time ON confirmation_logs(confirmed_at);

CREATE SEQUENCE IF NOT EXISTS badge_tokens_id_seq;
CREATE TABLE IF NOT EXISTS badge_tokens (
  id INTEGER DEFAULT nextval('badge_tokens_id_seq') PRIMARY KEY,
  code TEXT UNIQUE NOT NULL,
  person_id TEXT,  -- 个人工牌绑定的持有人；场所二维码为空
  location TEXT,
  status TEXT CHECK(status IN ('active','revoked')) NOT NULL,
  expires_at TIMESTAMP,  -- 非空表示一次性安全令牌
  used_at TIMESTAMP
);
"""


def _path_from_url(database_url: str) -> str:
    """duckdb://./data/x.duckdb -> ./data/x.duckdb；duckdb:///:memory: -> :memory:"""
    path = database_url
    if path.startswith("duckdb://"):
        path = path[len("duckdb://"):]
    if path.lstrip("/") == MEMORY_PATH:
        return MEMORY_PATH
    return path


class DatabaseManager:
    """数据库管理器，封装连接、建表和事务"""

    def __init__(self, db_path: Optional[str] = None):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self.db_path = db_path or _path_from_url(settings.database_url)

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """获取数据库连接"""
        with self._lock:
            if self._connection is None:
                if self.db_path != MEMORY_PATH:
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = duckdb.connect(self.db_path)
                self._init_schema()
            return self._connection

    def _init_schema(self):
        """初始化数据库表结构"""
        try:
            self._connection.execute(SCHEMA_SQL)
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to initialize schema: {e}")

    def init_database(self):
        """初始化数据库（应用启动时调用）"""
        with self._lock:
            self.connection.execute(SCHEMA_SQL)

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        数据库事务上下文管理器

        同一时刻只有一个事务在执行（可重入锁串行化），读取-校验-写入在同一事务内完成。
        嵌套调用时复用外层事务。业务异常原样抛出，DuckDB 异常转换为
        ConcurrencyError / DatabaseError，任何异常都会回滚整个事务。
        """
        with self._lock:
            conn = self.connection
            if self._depth > 0:
                self._depth += 1
                try:
                    yield conn
                finally:
                    self._depth -= 1
                return

            conn.execute("BEGIN TRANSACTION")
            self._depth = 1
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                self._rollback(conn)
                if isinstance(e, BaseApplicationError):
                    raise
                if isinstance(e, duckdb.TransactionException):
                    raise ConcurrencyError("系统繁忙，请稍后重试", details={"cause": str(e)}) from e
                if isinstance(e, duckdb.Error):
                    raise DatabaseError(f"数据库操作失败: {e}") from e
                raise
            finally:
                self._depth = 0

    @staticmethod
    def _rollback(conn: duckdb.DuckDBPyConnection):
        try:
            conn.execute("ROLLBACK")
        except duckdb.Error as e:
            # 事务可能已被 DuckDB 自动终止
            logger.debug("rollback skipped: %s", e)

    def execute_query(self, query: str, params: list = None) -> list:
        """执行查询并返回结果"""
        with self._lock:
            try:
                return self.connection.execute(query, params or []).fetchall()
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}") from e

    def execute_one(self, query: str, params: list = None) -> Optional[tuple]:
        """执行查询并返回单条结果"""
        with self._lock:
            try:
                return self.connection.execute(query, params or []).fetchone()
            except duckdb.Error as e:
                raise DatabaseError(f"Query execution failed: {e}") from e

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


# 全局数据库管理器实例（首次使用时才建立连接）
db_manager = DatabaseManager()
