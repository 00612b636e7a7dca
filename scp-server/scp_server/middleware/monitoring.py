"""监控中间件 - HTTP 请求指标收集"""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match
from typing import Callable
import time
import logging
from ..monitoring import metrics_collector, get_tracing_helper

logger = logging.getLogger(__name__)

# 超过该耗时的请求记录警告
SLOW_REQUEST_SECONDS = 5.0


def route_template(request: Request) -> str:
    """以路由模板作为指标标签，未匹配的路径归为 unmatched"""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


class MonitoringMiddleware(BaseHTTPMiddleware):
    """监控中间件 - 收集请求指标"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """处理请求并收集监控数据"""
        start_time = time.time()
        metrics_collector.increment_active_connections()

        method = request.method
        endpoint = route_template(request)
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            if status_code >= 400:
                metrics_collector.record_error(f"http_{status_code}", endpoint)
            return response

        except Exception as e:
            metrics_collector.record_error(type(e).__name__, endpoint)
            raise

        finally:
            duration = time.time() - start_time
            metrics_collector.decrement_active_connections()
            metrics_collector.record_http_request(method, endpoint, status_code, duration)

            if duration > SLOW_REQUEST_SECONDS:
                logger.warning(
                    f"慢请求: {method} {endpoint} - {duration:.3f}s",
                    extra={
                        "request_method": method,
                        "request_path": endpoint,
                        "duration": duration,
                        "trace_id": get_tracing_helper().get_trace_id(),
                    }
                )
