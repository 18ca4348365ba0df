"""
外部协作方接口
- Directory: 人员/部门目录
- MenuCatalog: 已发布菜单查询（可选，缺失时不影响报餐）
"""

import threading
from typing import Dict, Iterable, Optional, Protocol

from ..core.database import DatabaseManager
from ..models.person import PersonInfo


class Directory(Protocol):
    def resolve_department(self, person_id: str) -> Optional[str]:
        ...

    def resolve_person(self, person_id: str) -> Optional[PersonInfo]:
        ...


class MenuCatalog(Protocol):
    def find_published_menu(self, meal_date, meal_category) -> Optional[str]:
        ...


class InMemoryDirectory:
    """内存目录，用于测试和嵌入式场景"""

    def __init__(self, persons: Iterable[PersonInfo] = ()):
        self._lock = threading.Lock()
        self._persons: Dict[str, PersonInfo] = {}
        for person in persons:
            self.add(person)

    def add(self, person: PersonInfo) -> PersonInfo:
        with self._lock:
            self._persons[person.person_id] = person
        return person

    def deactivate(self, person_id: str) -> None:
        with self._lock:
            person = self._persons[person_id]
            self._persons[person_id] = person.model_copy(update={"active": False})

    def resolve_department(self, person_id: str) -> Optional[str]:
        person = self._persons.get(person_id)
        return person.department_id if person else None

    def resolve_person(self, person_id: str) -> Optional[PersonInfo]:
        return self._persons.get(person_id)


class TableDirectory:
    """读取 persons 表的目录实现，表数据由外部目录同步维护"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def resolve_department(self, person_id: str) -> Optional[str]:
        row = self.db.execute_one(
            "SELECT department_id FROM persons WHERE person_id=?", [person_id]
        )
        return row[0] if row else None

    def resolve_person(self, person_id: str) -> Optional[PersonInfo]:
        row = self.db.execute_one(
            "SELECT person_id, name, department_id, status FROM persons WHERE person_id=?",
            [person_id],
        )
        if not row:
            return None
        return PersonInfo(
            person_id=row[0], name=row[1], department_id=row[2], active=row[3] == "active"
        )
