"""分布式追踪单元测试"""
import pytest
from fastapi import FastAPI
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from pydantic import ValidationError

from scp_server.config.settings import Settings
from scp_server.exceptions.handlers import InvalidGrantError
from scp_server.models.oauth import InitRequest
from scp_server.monitoring import tracing
from scp_server.monitoring.tracing import (
    TracingConfig,
    TracingHelper,
    build_span_exporter,
    init_tracing,
)


@pytest.fixture
def span_exporter():
    """内存 span 导出器"""
    return InMemorySpanExporter()


@pytest.fixture
def helper(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return TracingHelper(provider.get_tracer("test"))


@pytest.fixture
def installed_helper(helper, monkeypatch):
    """替换全局追踪辅助实例，使服务层 span 写入内存导出器"""
    monkeypatch.setattr(tracing, "tracing_helper", helper)
    return helper


class TestTracingHelper:
    """追踪辅助类测试"""

    def test_operation_span(self, helper, span_exporter):
        with helper.trace_operation("oauth.poll", {"oauth.operation": "poll"}):
            assert len(helper.get_trace_id()) == 32

        span = span_exporter.get_finished_spans()[0]
        assert span.name == "oauth.poll"
        assert span.attributes["oauth.operation"] == "poll"
        assert span.status.status_code == StatusCode.OK

    def test_exception_recorded_and_reraised(self, helper, span_exporter):
        """测试异常记录到 span 后继续抛出"""
        with pytest.raises(InvalidGrantError):
            with helper.trace_operation("oauth.exchange"):
                raise InvalidGrantError("Invalid authorization code")

        span = span_exporter.get_finished_spans()[0]
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.type"] == "InvalidGrantError"
        assert span.attributes["error.code"] == "invalid_grant"
        assert span.events[0].name == "exception"

    def test_no_trace_id_outside_span(self, helper):
        assert helper.get_trace_id() is None


class TestServiceSpans:
    """服务层 span 测试"""

    def test_authorization_operation_traced(self, installed_helper, span_exporter, auth_service, init_payload):
        auth_service.init(InitRequest(**init_payload))

        spans = {span.name: span for span in span_exporter.get_finished_spans()}
        assert "oauth.init" in spans
        assert spans["oauth.init"].attributes["oauth.operation"] == "init"
        assert spans["oauth.init"].status.status_code == StatusCode.OK

    def test_rpc_error_traced(self, installed_helper, span_exporter, rpc_dispatcher, access_token_for):
        """测试缺少 scope 的 RPC 调用在 span 上记录错误码"""
        response = rpc_dispatcher.handle(
            access_token_for(["loyalty"]),
            {"jsonrpc": "2.0", "id": 1, "method": "scp.get_orders"},
        )
        assert response["error"]["code"] == -32001

        span = span_exporter.get_finished_spans()[0]
        assert span.name == "rpc.scp.get_orders"
        assert span.attributes["rpc.method"] == "scp.get_orders"
        assert span.status.status_code == StatusCode.ERROR
        assert span.attributes["error.code"] == "-32001"


class TestTracingSetup:
    """追踪初始化测试"""

    def test_disabled_by_default(self):
        settings = Settings(_env_file=None)
        before = tracing.get_tracing_helper()

        assert settings.tracing_enabled is False
        assert init_tracing(FastAPI(), settings) is None
        assert tracing.get_tracing_helper() is before

    def test_console_exporter(self):
        config = TracingConfig(Settings(_env_file=None, trace_exporter="Console", trace_sample_rate=0.25))
        assert config.exporter_type == "console"
        assert config.trace_sample_rate == 0.25
        assert isinstance(build_span_exporter(config), ConsoleSpanExporter)

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, trace_exporter="zipkin")
        with pytest.raises(ValidationError):
            Settings(_env_file=None, trace_sample_rate=1.5)
