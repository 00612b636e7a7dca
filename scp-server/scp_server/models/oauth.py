"""
授权流程相关数据模型
"""
from enum import Enum

from pydantic import BaseModel, EmailStr, Field


class Scope(str, Enum):
    """SCP 权限范围"""
    ORDERS = "orders"
    LOYALTY = "loyalty"
    OFFERS = "offers"
    PREFERENCES = "preferences"
    INTENT_READ = "intent:read"
    INTENT_CREATE = "intent:create"
    INTENT_WRITE = "intent:write"
    INTENT_DELETE = "intent:delete"


SUPPORTED_SCOPES = [scope.value for scope in Scope]


class AuthRequestStatus(str, Enum):
    """授权请求状态"""
    PENDING = "pending"
    AUTHORIZED = "authorized"
    DENIED = "denied"


class AuthorizationRequest(BaseModel):
    """存放在临时存储中的授权请求（时间戳为毫秒）"""
    id: str
    email: str
    customer_id: str | None = None
    client_id: str
    client_name: str
    scopes: list[str]
    code_challenge: str
    status: AuthRequestStatus = AuthRequestStatus.PENDING
    code: str | None = None
    created_at: int
    expires_at: int
    redirect_uri: str | None = None
    state: str | None = None
    domain: str | None = None


class InitRequest(BaseModel):
    """授权初始化请求"""
    email: EmailStr
    client_id: str = Field(..., min_length=1)
    client_name: str = ""
    # 空集合与未知 scope 由服务层按 invalid_scope 拒绝
    scopes: list[str]
    code_challenge: str = Field(..., min_length=1)
    code_challenge_method: str = "S256"
    redirect_uri: str | None = None
    state: str | None = None
    domain: str | None = None


class InitResponse(BaseModel):
    """授权初始化响应"""
    auth_request_id: str
    email_sent: bool = True
    expires_in: int
    poll_interval: int


class PollResponse(BaseModel):
    """轮询响应：status ∈ pending / authorized / denied / expired"""
    status: str
    code: str | None = None
    expires_in: int | None = None


class TokenResponse(BaseModel):
    """令牌响应（exchange 额外返回 customer_id / email）"""
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    customer_id: str | None = None
    email: str | None = None


class RevokeResponse(BaseModel):
    """撤销响应"""
    status: str = "revoked"
