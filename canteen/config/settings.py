from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 数据库配置
    database_url: str = "duckdb://./data/canteen.duckdb"

    # JWT配置（仅用于解析调用方身份，签发由认证服务负责）
    jwt_secret_key: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7天

    # API配置
    api_title: str = "食堂报餐 API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # 服务监听
    host: str = "127.0.0.1"
    port: int = 8000

    # 日志配置
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    # 就餐确认历史的分页大小
    history_page_size: int = Field(default=100, ge=1, le=1000)

    # 开发模式
    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="CANTEEN_", env_file=".env", case_sensitive=False, extra="ignore"
    )


# 全局设置实例
settings = Settings()
