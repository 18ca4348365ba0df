"""
测试配置文件
提供测试所需的fixtures：内存数据库、固定时钟、内存目录、已登录的测试客户端
"""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from ..app import create_app
from ..core.clock import FixedClock, REFERENCE_TIMEZONE, to_storage
from ..core.database import DatabaseManager
from ..core.security import security_manager
from ..models.person import PersonInfo
from ..services import InMemoryDirectory, build_services

# 2024-06-01 12:00 北京时间（午餐时段）
LUNCH_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=REFERENCE_TIMEZONE)
TODAY = "2024-06-01"
TOMORROW = "2024-06-02"

PERSONS = [
    PersonInfo(person_id="u1", name="张三", department_id="d1"),
    PersonInfo(person_id="u2", name="李四", department_id="d1"),
    PersonInfo(person_id="u3", name="王五", department_id="d1"),
    PersonInfo(person_id="u9", name="赵六", department_id="d2"),
    PersonInfo(person_id="admin", name="管理员", department_id="d0"),
]


@pytest.fixture
def clock():
    return FixedClock(LUNCH_TIME)


@pytest.fixture
def directory():
    return InMemoryDirectory(p.model_copy() for p in PERSONS)


@pytest.fixture
def test_db():
    """测试数据库"""
    db = DatabaseManager(":memory:")
    db.init_database()
    yield db
    db.close()


@pytest.fixture
def services(test_db, directory, clock):
    return build_services(test_db, directory, clock, history_page_size=2)


@pytest.fixture
def add_badge(test_db):
    """插入一条工牌/二维码令牌"""

    def _add(code, person_id=None, location=None, status="active", expires_at=None):
        test_db.execute_query(
            "INSERT INTO badge_tokens(code, person_id, location, status, expires_at) "
            "VALUES (?,?,?,?,?)",
            [code, person_id, location, status,
             to_storage(expires_at) if expires_at is not None else None],
        )
        return code

    return _add


@pytest.fixture
def client(services):
    """测试客户端（不进入 lifespan，数据库由 test_db 管理）"""
    return TestClient(create_app(services))


def auth_headers(person_id, is_admin=False):
    token = security_manager.create_jwt_token(person_id, is_admin=is_admin)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def user_headers():
    return auth_headers("u1")


@pytest.fixture
def admin_headers():
    return auth_headers("admin", is_admin=True)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)
