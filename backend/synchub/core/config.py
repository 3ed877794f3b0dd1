# 环境变量和配置
# pydantic-settings 读取 .env = core/config.py

from typing import Dict, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# 本机直接跑 uvicorn 时（不走 Docker），才会用到 model_config.env_file=".env"：
# 此时它会读取 backend/.env

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="",
        case_sensitive=False,
    )

    # ========= project config =========
    PROJECT_NAME: str = "Provider Sync Hub"
    ENVIRONMENT: str = "dev"
    API_PREFIX: str = "/api/v1"


    # ========= 鉴权 / CORS =========
    SECRET_KEY: str = Field("CHANGE_ME", alias="SECRET_KEY")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(480, alias="ACCESS_TOKEN_EXPIRE_MINUTES")   # 8h
    COOKIE_NAME: str = Field("access_token", alias="COOKIE_NAME")
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173"


    # ========= Database =========
    DATABASE_URL: str = Field(
        default="postgresql+psycopg://sync_user:sync_pass@db:5432/sync_hub",
        alias="DATABASE_URL",
    )
    DATABASE_URL_LOCAL: Optional[str] = Field(
        default=None,
        alias="DATABASE_URL_LOCAL",
        description="Optional local URL for tools (e.g., psql/scripts). Typically '...@localhost:5432/sync_hub'",
    )
    REDIS_URL: str = Field("redis://redis:6379/0", alias="REDIS_URL")


    # ========= celery config =========
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    CELERY_TIMEZONE: str = "UTC"
    SYNC_TASKS_INLINE: bool = Field(default=False, alias="SYNC_TASKS_INLINE")   # True: API/poller 直接在进程内执行


    # ========= scheduler =========
    SCHEDULE_POLL_INTERVAL_SEC: int = Field(60, ge=5, alias="SCHEDULE_POLL_INTERVAL_SEC")
    SCHEDULE_LEASE_TTL_SEC: int = Field(900, ge=30, alias="SCHEDULE_LEASE_TTL_SEC")
    SCHEDULE_DEFAULT_TIMEZONE: str = Field("UTC", alias="SCHEDULE_DEFAULT_TIMEZONE")
    SCHEDULE_ARM_BUFFER_SEC: int = Field(60, alias="SCHEDULE_ARM_BUFFER_SEC")
    SCHEDULE_RETRY_BASE_SEC: int = Field(60, alias="SCHEDULE_RETRY_BASE_SEC")
    SCHEDULE_MAX_RETRIES: int = Field(3, ge=0, alias="SCHEDULE_MAX_RETRIES")


    # ========= cache =========
    CACHE_DEFAULT_TTL_SEC: int = Field(3600, alias="CACHE_DEFAULT_TTL_SEC")
    INVENTORY_CACHE_TTL_SEC: int = Field(3600, alias="INVENTORY_CACHE_TTL_SEC")
    SYNC_PROGRESS_TTL_SEC: int = Field(24 * 60 * 60, alias="SYNC_PROGRESS_TTL_SEC")


    # ========= generic integration client =========
    INTEGRATION_HTTP_TIMEOUT: int = Field(30, ge=1, alias="INTEGRATION_HTTP_TIMEOUT")
    INTEGRATION_MAX_RETRIES: int = Field(3, ge=0, alias="INTEGRATION_MAX_RETRIES")
    INTEGRATION_INITIAL_DELAY_MS: int = Field(1000, ge=0, alias="INTEGRATION_INITIAL_DELAY_MS")
    ADMIN_EMAIL: Optional[str] = Field(None, alias="ADMIN_EMAIL")                  # 支付类集成失败必须告警


    # ========= outbound webhooks =========
    WEBHOOK_TIMEOUT_SEC: int = Field(5, ge=1, alias="WEBHOOK_TIMEOUT_SEC")
    WEBHOOK_MAX_FAILURES: int = Field(3, ge=1, alias="WEBHOOK_MAX_FAILURES")
    WEBHOOK_FAILURE_WINDOW_SEC: int = Field(3600, alias="WEBHOOK_FAILURE_WINDOW_SEC")
    WEBHOOK_MAX_WORKERS: int = Field(8, ge=1, alias="WEBHOOK_MAX_WORKERS")


    # ========= notifications =========
    SMTP_HOST: Optional[str] = Field(None, alias="SMTP_HOST")        # 为空则只记日志
    SMTP_PORT: int = Field(587, alias="SMTP_PORT")
    SMTP_USER: Optional[str] = Field(None, alias="SMTP_USER")
    SMTP_PASSWORD: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    SMTP_SENDER: str = Field("sync-hub@localhost", alias="SMTP_SENDER")
    NOTIFY_HTTP_TIMEOUT: int = Field(10, alias="NOTIFY_HTTP_TIMEOUT")


    # ========= inbound rate limit（按套餐） =========
    RATE_LIMIT_WINDOW_SEC: int = Field(3600, ge=1, alias="RATE_LIMIT_WINDOW_SEC")
    RATE_LIMIT_DEFAULT_PLAN: str = Field("basic", alias="RATE_LIMIT_DEFAULT_PLAN")
    RATE_LIMIT_PLANS: Dict[str, int] = Field(
        default_factory=lambda: {"free": 100, "basic": 1000, "pro": 10000, "vip": 100000},
        alias="RATE_LIMIT_PLANS",
    )


    # ========= providers（缺变量 = 不注册该 provider） =========
    PROVIDERS_SANDBOX: bool = Field(True, alias="PROVIDERS_SANDBOX")
    SHIPBOB_API_KEY: Optional[str] = Field(None, alias="SHIPBOB_API_KEY")
    SHIPBOB_API_URL: str = Field("https://api.shipbob.com", alias="SHIPBOB_API_URL")
    AMAZON_REFRESH_TOKEN: Optional[str] = Field(None, alias="AMAZON_REFRESH_TOKEN")
    AMAZON_CLIENT_ID: Optional[str] = Field(None, alias="AMAZON_CLIENT_ID")
    AMAZON_CLIENT_SECRET: Optional[str] = Field(None, alias="AMAZON_CLIENT_SECRET")
    AMAZON_REGION: str = Field("na", alias="AMAZON_REGION")
    AMAZON_TOKEN_URL: str = Field("https://api.amazon.com/auth/o2/token", alias="AMAZON_TOKEN_URL")
    AMAZON_MARKETPLACE_ID: str = Field("ATVPDKIKX0DER", alias="AMAZON_MARKETPLACE_ID")


    # 队列/beat 用 broker，业务缓存用 REDIS_URL；未单独配置 broker 时回落到 REDIS_URL
    @property
    def broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL


settings = Settings()  # 只从环境读取（含 .env）
