"""统一异常处理模块"""
import logging
import traceback

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BaseAppException(Exception):
    """应用基础异常类"""

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(BaseAppException):
    """认证失败异常"""
    pass


class TokenError(AuthenticationError):
    """访问令牌校验失败：malformed_token / invalid_signature / token_expired"""
    pass


class AuthorizationError(BaseAppException):
    """授权失败异常"""
    pass


class ForbiddenScopeError(AuthorizationError):
    """令牌缺少调用方法所需的 scope"""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(
            f"Forbidden: missing scope '{scope}'",
            "forbidden_scope",
            {"required_scope": scope},
        )


class ExternalServiceError(BaseAppException):
    """外部服务异常"""
    pass


class StoreError(BaseAppException):
    """存储不可用或存储内容损坏，对外只暴露通用错误"""

    def __init__(self, message: str, error_code: str = "server_error", details: dict = None):
        super().__init__(message, error_code, details)


class OAuthError(BaseAppException):
    """OAuth 协议错误：error_code 即 RFC 6749 中的 error 字段"""

    status_code = 400
    default_code = "invalid_request"

    def __init__(self, message: str, error_code: str = None, details: dict = None):
        super().__init__(message, error_code or self.default_code, details)


class InvalidRequestError(OAuthError):
    default_code = "invalid_request"


class InvalidScopeError(OAuthError):
    default_code = "invalid_scope"


class InvalidGrantError(OAuthError):
    default_code = "invalid_grant"


class InvalidClientError(OAuthError):
    default_code = "invalid_client_id"


class UnsupportedGrantTypeError(OAuthError):
    default_code = "unsupported_grant_type"


class InvalidLinkError(OAuthError):
    default_code = "invalid_or_expired_link"


class RequestExpiredError(OAuthError):
    default_code = "request_expired"


class CustomerNotFoundError(OAuthError):
    status_code = 404
    default_code = "customer_not_found"


class RPCError(Exception):
    """JSON-RPC 错误：rpc_code 为协议数值错误码"""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    UNAUTHORIZED = -32000
    FORBIDDEN = -32001

    def __init__(self, rpc_code: int, message: str, data: dict = None):
        self.rpc_code = rpc_code
        self.message = message
        self.data = data
        super().__init__(message)

    def to_dict(self) -> dict:
        """转换为 JSON-RPC error 对象"""
        error = {"code": self.rpc_code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ErrorResponse:
    """统一错误响应模型"""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict = None,
        request_id: str = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        self.request_id = request_id

    def to_dict(self) -> dict:
        """转换为字典格式"""
        response = {
            "error": {
                "code": self.error_code,
                "message": self.message
            }
        }

        if self.details:
            response["error"]["details"] = self.details

        if self.request_id:
            response["request_id"] = self.request_id

        return response


def get_request_id(request: Request) -> str:
    """获取请求ID"""
    return getattr(request.state, "request_id", "unknown")


async def oauth_exception_handler(request: Request, exc: OAuthError) -> JSONResponse:
    """OAuth 错误处理器：按 RFC 6749 §5.2 输出 error / error_description"""
    request_id = get_request_id(request)

    logger.warning(
        f"OAuth错误: {exc.error_code}",
        extra={
            "request_id": request_id,
            "error_code": exc.error_code,
            "error_message": exc.message,
            "path": request.url.path,
            "method": request.method
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "error_description": exc.message},
        headers={"Cache-Control": "no-store"}
    )


async def app_exception_handler(request: Request, exc: BaseAppException) -> JSONResponse:
    """应用自定义异常处理器"""
    request_id = get_request_id(request)

    # 根据异常类型确定HTTP状态码
    status_code_map = {
        AuthenticationError: 401,
        AuthorizationError: 403,
        ExternalServiceError: 502,
        StoreError: 500,
    }

    status_code = 500
    for exc_type, code in status_code_map.items():
        if isinstance(exc, exc_type):
            status_code = code
            break

    # 记录异常日志
    logger.error(
        f"应用异常: {exc.error_code}",
        extra={
            "request_id": request_id,
            "error_code": exc.error_code,
            "error_message": exc.message,
            "details": exc.details,
            "url": str(request.url),
            "method": request.method
        },
        exc_info=True if status_code >= 500 else False
    )

    # 5xx 不暴露内部细节，外部服务的传输错误同样只返回通用描述
    if isinstance(exc, StoreError):
        error_response = ErrorResponse(
            error_code=exc.error_code,
            message="An internal server error occurred",
            request_id=request_id
        )
    elif isinstance(exc, ExternalServiceError):
        error_response = ErrorResponse(
            error_code=exc.error_code,
            message="An upstream service request failed",
            request_id=request_id
        )
    else:
        error_response = ErrorResponse(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id
        )

    return JSONResponse(
        status_code=status_code,
        content=error_response.to_dict()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """HTTP异常处理器"""
    request_id = get_request_id(request)

    # 记录HTTP异常
    logger.warning(
        f"HTTP异常: {exc.status_code}",
        extra={
            "request_id": request_id,
            "status_code": exc.status_code,
            "detail": exc.detail,
            "url": str(request.url),
            "method": request.method
        }
    )

    if exc.status_code == 404:
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": "Endpoint not found"}
        )

    # 构建错误响应
    error_response = ErrorResponse(
        error_code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else "HTTP Error",
        details=exc.detail if isinstance(exc.detail, dict) else {},
        request_id=request_id
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.to_dict(),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """请求验证异常处理器：OAuth 端点统一返回 invalid_request"""
    request_id = get_request_id(request)

    # 提取验证错误详情
    validation_errors = []
    for error in exc.errors():
        validation_errors.append({
            "field": ".".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        "请求验证失败",
        extra={
            "request_id": request_id,
            "validation_errors": validation_errors,
            "url": str(request.url),
            "method": request.method
        }
    )

    fields = ", ".join(e["field"] for e in validation_errors)
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "error_description": f"Invalid or missing parameters: {fields}",
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """通用异常处理器（兜底）"""
    request_id = get_request_id(request)

    # 记录未捕获的异常
    logger.error(
        "未捕获的异常",
        extra={
            "request_id": request_id,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "url": str(request.url),
            "method": request.method,
            "traceback": traceback.format_exc()
        },
        exc_info=True
    )

    # 构建错误响应（不暴露内部错误详情）
    error_response = ErrorResponse(
        error_code="INTERNAL_SERVER_ERROR",
        message="An internal server error occurred",
        request_id=request_id
    )

    return JSONResponse(
        status_code=500,
        content=error_response.to_dict()
    )


def register_exception_handlers(app):
    """注册所有异常处理器"""
    # OAuth 协议错误（按异常类 MRO 匹配最具体的处理器）
    app.add_exception_handler(OAuthError, oauth_exception_handler)

    # 自定义应用异常
    app.add_exception_handler(BaseAppException, app_exception_handler)

    # HTTP异常
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # 验证异常
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # 通用异常（兜底）
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("异常处理器已注册")
