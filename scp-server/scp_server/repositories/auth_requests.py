"""
授权请求存储适配器：在临时存储上维护授权请求与一次性 magic link 令牌。
"""
import json

from pydantic import ValidationError

from scp_server.exceptions.handlers import StoreError
from scp_server.logging.config import get_structured_logger, mask_secret
from scp_server.models.oauth import AuthorizationRequest
from scp_server.repositories.transient import TransientStore

logger = get_structured_logger(__name__)

AUTH_REQUEST_PREFIX = "auth_request:"
MAGIC_LINK_PREFIX = "magic_link:"


class AuthRequestRepository:
    """授权请求与 magic link 的 CRUD"""

    def __init__(self, store: TransientStore, ttl: int = 600):
        self._store = store
        self.ttl = ttl

    def save(self, auth_request: AuthorizationRequest) -> None:
        """写入（或覆盖）授权请求，重置 TTL"""
        self._store.put(
            AUTH_REQUEST_PREFIX + auth_request.id,
            auth_request.model_dump_json(),
            self.ttl,
        )

    def get(self, auth_request_id: str) -> AuthorizationRequest | None:
        """读取授权请求；存储内容损坏视为内部错误"""
        raw = self._store.get(AUTH_REQUEST_PREFIX + auth_request_id)
        if raw is None:
            return None
        try:
            return AuthorizationRequest.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(
                "授权请求数据解析失败 auth_request_id=%s err=%s",
                mask_secret(auth_request_id), str(e)
            )
            raise StoreError("Failed to parse auth request data")

    def create_magic_link(self, magic_token: str, auth_request_id: str) -> None:
        """登记 magic link 令牌 → 授权请求 ID"""
        self._store.put(MAGIC_LINK_PREFIX + magic_token, auth_request_id, self.ttl)

    def consume_magic_link(self, magic_token: str) -> str | None:
        """取出并删除 magic link 映射；第二次调用必然返回 None"""
        return self._store.pop(MAGIC_LINK_PREFIX + magic_token)
