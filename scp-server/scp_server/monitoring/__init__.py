"""监控模块 - 包含指标收集、分布式追踪和错误监控"""

from .metrics import metrics_collector, get_metrics_response
from .sentry_config import setup_sentry, before_send_filter
from .tracing import init_tracing, get_tracing_helper, TracingHelper

__all__ = [
    "metrics_collector",
    "get_metrics_response",
    "setup_sentry",
    "before_send_filter",
    "init_tracing",
    "get_tracing_helper",
    "TracingHelper",
]
