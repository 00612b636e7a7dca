"""应用工厂模式：FastAPI应用实例创建与配置"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scp_server.config.settings import settings
from scp_server.db import create_tables
from scp_server.dependencies import get_engine
from scp_server.exceptions.handlers import register_exception_handlers
from scp_server.logging.config import get_structured_logger
from scp_server.middleware.logging import LoggingMiddleware, RequestSizeMiddleware
from scp_server.middleware.monitoring import MonitoringMiddleware
from scp_server.middleware.security import (
    HTTPSRedirectMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from scp_server.monitoring import get_metrics_response, init_tracing, setup_sentry
from scp_server.routers import capabilities, health, oauth, rpc

logger = get_structured_logger(__name__)


def create_app() -> FastAPI:
    """创建并配置FastAPI应用实例"""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug
    )

    setup_monitoring(app)

    if settings.db_auto_create:
        create_tables(get_engine())

    # 添加中间件（注意顺序：后添加的先执行）

    # 1. 监控与日志中间件
    app.add_middleware(MonitoringMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestSizeMiddleware, max_size=1024 * 1024)

    # 2. 安全中间件
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # 3. CORS中间件（最外层，预检请求直接返回）
    if settings.environment.value == "production":
        # 生产环境：严格的CORS策略
        allowed_origins = settings.cors_origins or []
        allowed_methods = ["GET", "POST", "OPTIONS"]
        allowed_headers = ["Authorization", "Content-Type", "X-Request-ID"]
    else:
        # 开发环境：宽松的CORS策略
        allowed_origins = ["*"]
        allowed_methods = ["*"]
        allowed_headers = ["*"]

    # 令牌经 Authorization 头传递，不使用 cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=allowed_methods,
        allow_headers=allowed_headers,
        expose_headers=["X-Request-ID"]
    )

    logger.info("中间件已配置")

    # 注册异常处理器
    register_exception_handlers(app)

    # 注册路由
    app.include_router(capabilities.router)
    app.include_router(oauth.router)
    app.include_router(rpc.router)
    app.include_router(health.router)

    # 添加监控端点
    @app.get("/metrics", include_in_schema=False)
    def metrics():
        """Prometheus指标端点"""
        return get_metrics_response()

    logger.info(f"应用已创建 - 环境: {settings.environment.value}, 调试模式: {settings.debug}")
    return app


def setup_monitoring(app: FastAPI):
    """设置监控系统"""
    try:
        if setup_sentry(settings):
            logger.info("Sentry错误监控已启用")

        # 初始化OpenTelemetry分布式追踪（TRACING_ENABLED 控制）
        if init_tracing(app, settings, engine=get_engine()):
            logger.info("OpenTelemetry分布式追踪已启用")
    except Exception as e:
        # 监控系统失败不应该影响应用启动
        logger.error(f"监控系统初始化失败: {e}", exc_info=True)
