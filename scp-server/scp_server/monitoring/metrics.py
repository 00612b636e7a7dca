"""Prometheus指标收集模块"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response
import logging
import os
import psutil

logger = logging.getLogger(__name__)

# HTTP请求指标
http_requests_total = Counter(
    "http_requests_total",
    "HTTP请求总数",
    ["method", "endpoint", "status_code"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP请求持续时间（秒）",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0)
)

# 授权流程指标：operation ∈ init / confirm / poll / exchange / refresh / revoke
oauth_operations_total = Counter(
    "oauth_operations_total",
    "OAuth操作总数",
    ["operation", "status"]
)

# RPC指标
rpc_requests_total = Counter(
    "rpc_requests_total",
    "JSON-RPC请求总数",
    ["method", "status"]
)

rpc_token_validation_duration = Histogram(
    "rpc_token_validation_duration_seconds",
    "访问令牌验证持续时间（秒）",
    buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1)
)

# 系统资源指标
system_cpu_usage = Gauge(
    "system_cpu_usage_percent",
    "系统CPU使用率"
)

system_memory_usage = Gauge(
    "system_memory_usage_bytes",
    "系统内存使用量（字节）"
)

process_memory_usage = Gauge(
    "process_memory_usage_bytes",
    "进程内存使用量（字节）"
)

active_connections = Gauge(
    "active_connections_total",
    "活跃连接数"
)

# 错误指标
error_count_total = Counter(
    "error_count_total",
    "错误总数",
    ["error_type", "endpoint"]
)


class MetricsCollector:
    """指标收集器"""

    def __init__(self):
        self.process = psutil.Process(os.getpid())
        self._active_requests = 0

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """记录HTTP请求指标"""
        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_oauth_operation(self, operation: str, status: str):
        """记录授权流程操作；status 为 success 或错误码"""
        oauth_operations_total.labels(operation=operation, status=status).inc()

    def record_rpc_request(self, method: str, status: str):
        """记录RPC调用；status 为 success 或 JSON-RPC 错误码"""
        rpc_requests_total.labels(method=method, status=status).inc()

    def record_token_validation(self, duration: float):
        """记录访问令牌验证耗时"""
        rpc_token_validation_duration.observe(duration)

    def record_error(self, error_type: str, endpoint: str):
        """记录错误指标"""
        error_count_total.labels(
            error_type=error_type,
            endpoint=endpoint
        ).inc()

    def update_system_metrics(self):
        """更新系统指标"""
        try:
            system_cpu_usage.set(psutil.cpu_percent(interval=None))
            system_memory_usage.set(psutil.virtual_memory().used)
            process_memory_usage.set(self.process.memory_info().rss)
        except psutil.Error as e:
            # 系统指标采集失败不影响主要功能
            logger.warning(f"采集系统指标失败: {e}")

    def increment_active_connections(self):
        """增加活跃连接数"""
        self._active_requests += 1
        active_connections.set(self._active_requests)

    def decrement_active_connections(self):
        """减少活跃连接数"""
        self._active_requests = max(0, self._active_requests - 1)
        active_connections.set(self._active_requests)

    def get_metrics(self) -> bytes:
        """获取所有指标的Prometheus格式输出"""
        self.update_system_metrics()
        return generate_latest()


# 全局指标收集器实例
metrics_collector = MetricsCollector()


def get_metrics_response() -> Response:
    """获取指标响应"""
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=CONTENT_TYPE_LATEST
    )
