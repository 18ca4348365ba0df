"""
日志配置
应用启动时调用一次，级别和格式来自 settings
"""

import logging

from ..config.settings import Settings


def configure_logging(app_settings: Settings) -> None:
    level = logging.DEBUG if app_settings.debug else getattr(
        logging, app_settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(level=level, format=app_settings.log_format)
    logging.getLogger("canteen").setLevel(level)
