"""安全中间件模块"""
import logging
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse

from scp_server.config.settings import settings

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """安全头中间件：添加安全相关的HTTP头"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"

        # 严格传输安全（仅HTTPS）
        if settings.environment.value == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        # 确认页只有内联样式，不加载脚本
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; "
            "style-src 'unsafe-inline'; "
            "img-src 'self' data:; "
            "frame-ancestors 'none';"
        )

        return response


class HTTPSRedirectMiddleware(BaseHTTPMiddleware):
    """HTTPS重定向中间件：在生产环境强制使用HTTPS"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if settings.environment.value == "production":
            # 代理（如nginx）转发时以 X-Forwarded-Proto 为准
            forwarded_proto = request.headers.get("X-Forwarded-Proto")
            scheme = (forwarded_proto or request.url.scheme).lower()
            if scheme != "https":
                url = request.url.replace(scheme="https")
                return RedirectResponse(url=str(url), status_code=301)

        return await call_next(request)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """请求ID中间件：为每个请求生成唯一ID用于追踪"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        # 供日志与异常处理器使用
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
