"""Sentry错误监控配置"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from scp_server.config import Settings

logger = logging.getLogger(__name__)

# 这些请求头和查询参数携带凭据，不允许上报
SENSITIVE_HEADERS = ("authorization", "cookie", "x-api-key")
SENSITIVE_QUERY_PARAMS = ("token", "code", "code_verifier", "refresh_token")


def before_send_filter(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """发送前过滤器：丢弃探活请求，移除凭据"""
    url = event.get("request", {}).get("url", "")
    if url.endswith("/health") or url.endswith("/metrics"):
        return None

    request_data = event.get("request")
    if request_data:
        headers = request_data.get("headers")
        if isinstance(headers, dict):
            for header in list(headers):
                if header.lower() in SENSITIVE_HEADERS:
                    headers.pop(header)

        query_string = request_data.get("query_string") or ""
        if any(f"{param}=" in query_string for param in SENSITIVE_QUERY_PARAMS):
            request_data["query_string"] = "[Filtered]"

        # 表单/JSON 请求体里是授权码、verifier、刷新令牌
        if "data" in request_data:
            request_data["data"] = "[Filtered]"

    return event


def setup_sentry(settings: Settings) -> bool:
    """初始化Sentry；未配置 DSN 时禁用"""
    if not settings.sentry_dsn:
        logger.info("Sentry DSN 未配置，错误监控已禁用")
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.environment.value,
        release=settings.app_version,
        traces_sample_rate=0.1,
        send_default_pii=False,
        integrations=[
            FastApiIntegration(),
            StarletteIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=before_send_filter,
    )
    sentry_sdk.set_tag("service", "scp-server")

    logger.info(f"Sentry 已初始化: environment={settings.environment.value}")
    return True
