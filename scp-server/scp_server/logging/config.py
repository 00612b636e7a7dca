"""结构化日志配置模块"""
import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

# 上下文变量用于存储请求ID和客户ID
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
customer_id_var: ContextVar[str | None] = ContextVar("customer_id", default=None)

# LogRecord 自带属性，其余属性视为 extra 字段
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class SensitiveDataFilter:
    """敏感信息脱敏过滤器"""

    # 敏感字段模式
    SENSITIVE_PATTERNS = [
        # 令牌与 PKCE 秘密
        (r'"refresh_token"\s*:\s*"[^"]*"', r'"refresh_token": "***"'),
        (r'"access_token"\s*:\s*"[^"]*"', r'"access_token": "***"'),
        (r'"code_verifier"\s*:\s*"[^"]*"', r'"code_verifier": "***"'),
        # 授权码与 magic link 令牌只保留前6位
        (r'"(code|token|magic_token)"\s*:\s*"([^"]{6})[^"]*"', r'"\1": "\2***"'),
        # 邮箱脱敏（保留前3位和@后的域名）
        (r'"email"\s*:\s*"([^@"]{1,3})[^@"]*(@[^"]+)"', r'"email": "\1***\2"'),
        # Bearer 头
        (r'Bearer\s+[A-Za-z0-9\-_\.]+', r'Bearer ***'),
    ]

    @classmethod
    def sanitize(cls, message: str) -> str:
        """脱敏敏感信息"""
        sanitized = message
        for pattern, replacement in cls.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized


def mask_secret(value: str | None, keep: int = 6) -> str:
    """截断令牌类字符串，仅用于日志"""
    if not value:
        return "None"
    return value[:keep] + "..."


class JSONFormatter(logging.Formatter):
    """JSON格式化器"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.hostname = "scp-server"  # 服务名称

    def format(self, record: logging.LogRecord) -> str:
        """格式化日志记录为JSON"""
        # 基础日志信息
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "service": self.hostname,
        }

        # 添加请求上下文信息
        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id
            log_entry["correlation_id"] = request_id  # 用作correlation ID

        customer_id = customer_id_var.get()
        if customer_id:
            log_entry["customer_id"] = customer_id

        # 添加额外字段
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_entry:
                log_entry[key] = value

        # 添加异常信息
        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        # 转换为JSON并脱敏
        json_str = json.dumps(log_entry, ensure_ascii=False, default=str)
        return SensitiveDataFilter.sanitize(json_str)


class StructuredLogger:
    """结构化日志器"""

    @staticmethod
    def setup_logging(log_level: str = "INFO", enable_json: bool = True) -> None:
        """设置日志配置"""
        # 清除现有处理器
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        # 设置日志级别
        level = getattr(logging, log_level.upper(), logging.INFO)
        root_logger.setLevel(level)

        # 创建控制台处理器
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)

        if enable_json:
            # JSON格式化器
            formatter = JSONFormatter()
        else:
            # 开发环境使用简单格式
            formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )

        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        # 设置第三方库日志级别
        logging.getLogger("uvicorn").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
        logging.getLogger("fastapi").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

        logging.info("结构化日志已配置", extra={
            "log_level": log_level,
            "json_format": enable_json
        })

    @staticmethod
    def set_request_context(request_id: str, customer_id: str = None) -> None:
        """设置请求上下文"""
        request_id_var.set(request_id)
        if customer_id:
            customer_id_var.set(customer_id)

    @staticmethod
    def set_customer(customer_id: str) -> None:
        """令牌验证通过后补充客户上下文"""
        customer_id_var.set(customer_id)

    @staticmethod
    def clear_request_context() -> None:
        """清除请求上下文"""
        request_id_var.set(None)
        customer_id_var.set(None)

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """获取日志器"""
        return logging.getLogger(name)


def get_structured_logger(name: str) -> logging.Logger:
    """获取结构化日志器的便捷函数"""
    return StructuredLogger.get_logger(name)
