"""
食堂报餐与就餐确认服务
"""

__version__ = "1.0.0"
