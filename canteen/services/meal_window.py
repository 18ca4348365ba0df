"""
就餐时段判断
根据时刻在参考时区下的小时数判断所属餐次，只用于扫码确认路径，
餐次由服务器时钟决定，不信任调用方传入的值
"""

from datetime import datetime
from typing import Dict, Optional, Tuple

from ..core.clock import to_reference
from ..models.reservation import MealCategory

# 左闭右开的小时区间
MEAL_WINDOWS: Dict[MealCategory, Tuple[int, int]] = {
    MealCategory.BREAKFAST: (6, 10),
    MealCategory.LUNCH: (11, 14),
    MealCategory.DINNER: (17, 20),
}


def resolve(instant: datetime) -> Optional[MealCategory]:
    """返回时刻所在的餐次，不在任何就餐时段内时返回 None"""
    hour = to_reference(instant).hour
    for category, (start, end) in MEAL_WINDOWS.items():
        if start <= hour < end:
            return category
    return None


def describe_window(category: MealCategory) -> str:
    start, end = MEAL_WINDOWS[category]
    return f"{category.display_name} {start:02d}:00-{end:02d}:00"
