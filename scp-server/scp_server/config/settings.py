"""
应用配置管理：基于 Pydantic BaseSettings 的多环境配置体系。
支持 dev/staging/prod 环境区分与密钥安全管理。
"""
from enum import Enum

from pydantic import Field, validator
from pydantic_settings import BaseSettings

from scp_server.providers.directory import DIRECTORY_BACKENDS


class Environment(str, Enum):
    """环境枚举：开发、测试、生产。"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class TransientBackend(str, Enum):
    """临时存储后端：redis 或进程内存（仅开发/测试）。"""
    REDIS = "redis"
    MEMORY = "memory"


class Settings(BaseSettings):
    """应用配置：基于环境变量与 .env 文件的统一配置管理。"""

    # 应用基础配置
    app_name: str = Field(default="SCP Authorization Server", description="应用名称")
    app_version: str = Field(default="1.0.0", description="应用版本")
    environment: Environment = Field(default=Environment.DEVELOPMENT, description="运行环境")
    debug: bool = Field(default=False, description="调试模式")

    # 服务器配置
    host: str = Field(default="127.0.0.1", description="服务监听地址")
    port: int = Field(default=8787, description="服务监听端口")
    public_url: str = Field(default="http://localhost:8787", description="对外访问地址（用于生成 magic link）")

    # 令牌配置
    jwt_secret: str = Field(..., description="访问令牌 HMAC 签名密钥")
    access_token_ttl: int = Field(default=3600, description="访问令牌有效期（秒）")
    refresh_token_ttl: int = Field(default=30 * 24 * 3600, description="刷新令牌有效期（秒）")
    auth_request_ttl: int = Field(default=600, description="授权请求与 magic link 有效期（秒）")
    auth_code_ttl: int = Field(default=300, description="授权码有效期（秒）")
    poll_interval: int = Field(default=2, description="建议客户端轮询间隔（秒）")

    # 临时存储（授权请求 / magic link）
    transient_backend: TransientBackend = Field(default=TransientBackend.REDIS, description="临时存储后端")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis 连接地址")

    # 持久存储（授权码 / 刷新令牌 / 意图日志）
    database_url: str = Field(default="sqlite:///./scp_oauth.db", description="SQLAlchemy 数据库 URL")
    db_auto_create: bool = Field(default=True, description="启动时自动建表")

    # 邮件配置
    resend_api_key: str | None = Field(default=None, description="Resend API 密钥（未配置时仅记录 magic link）")
    email_from: str = Field(default="SCP Authorization <noreply@scp.example.com>", description="发件人地址")
    email_api_url: str = Field(default="https://api.resend.com/emails", description="邮件服务接口地址")
    email_timeout: float = Field(default=10.0, description="邮件服务请求超时（秒）")

    # 客户目录
    directory_backend: str = Field(default="demo", description="客户目录实现（目前仅 demo）")

    # 安全配置
    cors_origins: list[str] | None = Field(default=None, description="生产环境CORS源地址")

    # 日志配置
    log_level: str = Field(default="INFO", description="日志级别")
    log_format: str = Field(default="json", description="日志格式：json 或 text")

    # 错误监控
    sentry_dsn: str | None = Field(default=None, description="Sentry DSN（未配置时禁用）")

    # 分布式追踪
    tracing_enabled: bool = Field(default=False, description="启用 OpenTelemetry 分布式追踪")
    trace_exporter: str = Field(default="otlp", description="追踪导出器：otlp 或 console")
    otlp_endpoint: str = Field(default="http://localhost:4317", description="OTLP gRPC 收集器地址")
    trace_sample_rate: float = Field(default=1.0, description="追踪采样率（0~1）")

    @validator("environment", pre=True)
    def validate_environment(cls, v):
        """验证环境变量值。"""
        if isinstance(v, str):
            return Environment(v.lower())
        return v

    @validator("debug", pre=True)
    def set_debug_from_env(cls, v, values):
        """根据环境自动设置调试模式。"""
        if values.get("environment") == Environment.DEVELOPMENT:
            return True
        return v

    @validator("directory_backend")
    def validate_directory_backend(cls, v):
        """客户目录后端须为已注册的实现。"""
        v = v.strip().lower()
        if v not in DIRECTORY_BACKENDS:
            raise ValueError(f"unsupported directory backend: {v}")
        return v

    @validator("trace_exporter")
    def validate_trace_exporter(cls, v):
        """追踪导出器校验。"""
        v = v.strip().lower()
        if v not in ("otlp", "console"):
            raise ValueError(f"unsupported trace exporter: {v}")
        return v

    @validator("trace_sample_rate")
    def validate_trace_sample_rate(cls, v):
        """采样率须在 0 到 1 之间。"""
        if not 0.0 <= v <= 1.0:
            raise ValueError("trace_sample_rate must be between 0 and 1")
        return v

    @validator("public_url")
    def strip_public_url(cls, v):
        """去掉末尾斜杠，便于拼接端点地址。"""
        return v.rstrip("/")

    @validator("cors_origins", pre=True)
    def parse_cors_origins(cls, v):
        """解析 CORS 允许源（支持逗号分隔字符串）。"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        # 环境变量前缀
        env_prefix = ""


def get_settings() -> Settings:
    """获取应用配置实例（单例模式）。"""
    return Settings()


# 全局配置实例
settings = get_settings()
