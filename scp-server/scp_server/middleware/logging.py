"""日志中间件模块"""
import time
from collections.abc import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from scp_server.logging.config import StructuredLogger, get_structured_logger

logger = get_structured_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """日志中间件 - 设置请求上下文并记录请求开始/完成"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """处理请求并记录日志"""
        request_id = getattr(request.state, "request_id", None)

        # 客户ID在令牌校验通过后由服务层补充
        StructuredLogger.set_request_context(request_id)

        start_time = time.time()
        logger.info(
            "请求开始",
            extra={
                "event": "request_start",
                "method": request.method,
                "path": request.url.path,
                "client_ip": self._get_client_ip(request),
                "user_agent": request.headers.get("user-agent"),
                "content_type": request.headers.get("content-type"),
                "content_length": request.headers.get("content-length"),
            }
        )

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            logger.info(
                "请求完成",
                extra={
                    "event": "request_complete",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            )
            return response

        except Exception as exc:
            process_time = time.time() - start_time
            logger.error(
                "请求异常",
                extra={
                    "event": "request_error",
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_ms": round(process_time * 1000, 2),
                    "exception_type": type(exc).__name__,
                },
                exc_info=True
            )
            raise

        finally:
            StructuredLogger.clear_request_context()

    def _get_client_ip(self, request: Request) -> str:
        """获取客户端IP地址"""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"


class RequestSizeMiddleware(BaseHTTPMiddleware):
    """请求大小限制中间件"""

    def __init__(self, app, max_size: int = 1024 * 1024):  # 默认1MB
        super().__init__(app)
        self.max_size = max_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """检查请求大小"""
        content_length = request.headers.get("content-length")

        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                logger.warning(
                    "无效的Content-Length头",
                    extra={"event": "invalid_content_length", "content_length_header": content_length}
                )
                return JSONResponse(
                    status_code=400,
                    content={"error": "invalid_request", "error_description": "Invalid Content-Length header"}
                )

            if size > self.max_size:
                logger.warning(
                    "请求体过大",
                    extra={"event": "request_too_large", "content_length": size, "max_size": self.max_size}
                )
                return JSONResponse(
                    status_code=413,
                    content={"error": "invalid_request", "error_description": "Request entity too large"}
                )

        return await call_next(request)
