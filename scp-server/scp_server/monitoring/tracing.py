"""OpenTelemetry分布式追踪配置"""
import os
from contextlib import contextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.propagate import set_global_textmap
from opentelemetry.propagators.b3 import B3MultiFormat
from opentelemetry.propagators.composite import CompositePropagator
from opentelemetry.propagators.jaeger import JaegerPropagator
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.engine import Engine

from scp_server.logging.config import get_structured_logger

logger = get_structured_logger(__name__)

DEFAULT_TRACER_NAME = "scp-server"


class TracingConfig:
    """追踪配置类"""

    def __init__(self, settings):
        self.service_name = settings.app_name
        self.service_version = settings.app_version
        self.environment = settings.environment.value
        self.exporter_type = settings.trace_exporter
        self.otlp_endpoint = settings.otlp_endpoint
        self.trace_sample_rate = settings.trace_sample_rate


def build_span_exporter(config: TracingConfig) -> SpanExporter:
    """按配置创建 span 导出器"""
    if config.exporter_type == "otlp":
        return OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    if config.exporter_type == "console":
        return ConsoleSpanExporter()
    raise ValueError(f"unsupported trace exporter: {config.exporter_type}")


def setup_tracing(app: FastAPI, config: TracingConfig, engine: Optional[Engine] = None) -> trace.Tracer:
    """设置OpenTelemetry追踪"""

    # 创建资源
    resource = Resource.create({
        SERVICE_NAME: config.service_name,
        SERVICE_VERSION: config.service_version,
        "environment": config.environment,
        "service.instance.id": os.getenv("HOSTNAME", "unknown")
    })

    # 上游已采样的请求沿用其决定，其余按比例采样
    sampler = ParentBased(TraceIdRatioBased(config.trace_sample_rate))
    tracer_provider = TracerProvider(resource=resource, sampler=sampler)
    tracer_provider.add_span_processor(BatchSpanProcessor(build_span_exporter(config)))
    trace.set_tracer_provider(tracer_provider)

    # 设置传播器
    set_global_textmap(CompositePropagator([
        JaegerPropagator(),
        B3MultiFormat()
    ]))

    # 自动仪表化：HTTP 入口、邮件服务调用、临时存储与数据库
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health,metrics")
    HTTPXClientInstrumentor().instrument()
    RedisInstrumentor().instrument()
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine)
    LoggingInstrumentor().instrument(set_logging_format=False)

    return trace.get_tracer(config.service_name, config.service_version)


class TracingHelper:
    """追踪辅助类"""

    def __init__(self, tracer: trace.Tracer):
        self.tracer = tracer

    @contextmanager
    def trace_operation(self, operation_name: str, attributes: Optional[Dict[str, Any]] = None):
        """追踪操作上下文管理器"""
        with self.tracer.start_as_current_span(operation_name) as span:
            try:
                if attributes:
                    for key, value in attributes.items():
                        span.set_attribute(key, value)

                yield span

                span.set_status(Status(StatusCode.OK))

            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                span.set_attribute("error", True)
                span.set_attribute("error.type", type(e).__name__)
                # OAuth 错误码或 JSON-RPC 错误码
                error_code = getattr(e, "error_code", None) or getattr(e, "rpc_code", None)
                if error_code is not None:
                    span.set_attribute("error.code", str(error_code))
                raise

    def get_current_span(self) -> Optional[trace.Span]:
        """获取当前span"""
        return trace.get_current_span()

    def get_trace_id(self) -> Optional[str]:
        """获取当前trace ID"""
        span = self.get_current_span()
        if span and span.get_span_context().is_valid:
            return format(span.get_span_context().trace_id, '032x')
        return None


# 未启用追踪时使用全局代理 tracer（no-op），业务代码无需判断开关
tracing_helper: TracingHelper = TracingHelper(trace.get_tracer(DEFAULT_TRACER_NAME))


def init_tracing(app: FastAPI, settings, engine: Optional[Engine] = None) -> Optional[TracingHelper]:
    """初始化追踪；未启用时返回 None"""
    global tracing_helper

    if not settings.tracing_enabled:
        logger.info("OpenTelemetry分布式追踪未启用")
        return None

    config = TracingConfig(settings)
    tracer = setup_tracing(app, config, engine)
    tracing_helper = TracingHelper(tracer)
    logger.info(
        "OpenTelemetry分布式追踪已初始化 exporter=%s sample_rate=%s",
        config.exporter_type, config.trace_sample_rate
    )
    return tracing_helper


def get_tracing_helper() -> TracingHelper:
    """获取追踪辅助实例"""
    return tracing_helper
