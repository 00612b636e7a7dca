"""
授权服务：magic link 授权状态机与令牌生命周期。

授权请求  pending → authorized | denied（过期由 expires_at 判断）
授权码    未使用 → 已使用（条件 UPDATE，单向）
刷新令牌  每次刷新就地轮换，旧值立即失效
"""
import functools

from scp_server.exceptions.handlers import (
    CustomerNotFoundError,
    InvalidClientError,
    InvalidGrantError,
    InvalidLinkError,
    InvalidRequestError,
    InvalidScopeError,
    OAuthError,
    RequestExpiredError,
)
from scp_server.logging.config import StructuredLogger, get_structured_logger, mask_secret
from scp_server.models.oauth import (
    SUPPORTED_SCOPES,
    AuthorizationRequest,
    AuthRequestStatus,
    InitRequest,
    InitResponse,
    PollResponse,
    RevokeResponse,
    TokenResponse,
)
from scp_server.monitoring.metrics import metrics_collector
from scp_server.monitoring.tracing import get_tracing_helper
from scp_server.providers.directory import CustomerDirectory
from scp_server.providers.notifier import MagicLinkNotifier
from scp_server.repositories.auth_requests import AuthRequestRepository
from scp_server.repositories.oauth_tokens import TokenRepository, decode_scopes
from scp_server.services.pkce import SUPPORTED_METHODS, verify_pkce
from scp_server.services.runtime import Clock, IdGenerator
from scp_server.services.token_codec import TokenCodec

logger = get_structured_logger(__name__)

INVALID_CODE_MESSAGE = "Invalid authorization code"
INVALID_REFRESH_MESSAGE = "Invalid refresh token"
DEFAULT_MERCHANT_NAME = "the merchant"


def _tracked(operation: str):
    """按操作结果累加 oauth_operations_total，并记录 oauth.<operation> span"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attributes = {"oauth.operation": operation, "component": "oauth"}
            try:
                with get_tracing_helper().trace_operation(f"oauth.{operation}", attributes):
                    result = func(*args, **kwargs)
            except OAuthError as e:
                metrics_collector.record_oauth_operation(operation, e.error_code)
                raise
            except Exception:
                metrics_collector.record_oauth_operation(operation, "error")
                raise
            metrics_collector.record_oauth_operation(operation, "success")
            return result
        return wrapper
    return decorator


class AuthorizationService:
    """授权编排：init / confirm / poll / exchange / refresh / revoke"""

    def __init__(
        self,
        auth_requests: AuthRequestRepository,
        tokens: TokenRepository,
        directory: CustomerDirectory,
        notifier: MagicLinkNotifier,
        codec: TokenCodec,
        public_url: str,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
        auth_request_ttl: int = 600,
        auth_code_ttl: int = 300,
        refresh_token_ttl: int = 30 * 24 * 3600,
        poll_interval: int = 2,
    ):
        self.auth_requests = auth_requests
        self.tokens = tokens
        self.directory = directory
        self.notifier = notifier
        self.codec = codec
        self.public_url = public_url.rstrip("/")
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()
        self.auth_request_ttl = auth_request_ttl
        self.auth_code_ttl = auth_code_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.poll_interval = poll_interval

    # -------------------------------
    # 授权请求
    # -------------------------------
    @_tracked("init")
    def init(self, req: InitRequest) -> InitResponse:
        """
        创建授权请求并发送 magic link 邮件

        不查询客户目录：无论 email 是否存在，响应都相同。
        """
        if req.code_challenge_method not in SUPPORTED_METHODS:
            raise InvalidRequestError("code_challenge_method must be S256")
        if not req.scopes:
            raise InvalidScopeError("At least one scope is required")
        unknown = [s for s in req.scopes if s not in SUPPORTED_SCOPES]
        if unknown:
            raise InvalidScopeError(f"Unsupported scope: {' '.join(unknown)}")

        now = self.clock.now_ms()
        auth_request = AuthorizationRequest(
            id=self.ids.request_id(),
            email=str(req.email),
            client_id=req.client_id,
            client_name=req.client_name,
            scopes=list(dict.fromkeys(req.scopes)),
            code_challenge=req.code_challenge,
            status=AuthRequestStatus.PENDING,
            created_at=now,
            expires_at=now + self.auth_request_ttl * 1000,
            redirect_uri=req.redirect_uri,
            state=req.state,
            domain=req.domain,
        )
        magic_token = self.ids.magic_token()

        self.auth_requests.save(auth_request)
        self.auth_requests.create_magic_link(magic_token, auth_request.id)

        link = f"{self.public_url}/v1/authorize/confirm?token={magic_token}"
        self.notifier.send(auth_request.email, req.domain or DEFAULT_MERCHANT_NAME, link)

        logger.info(
            "授权请求已创建 auth_request_id=%s client_id=%s scopes=%s",
            mask_secret(auth_request.id), auth_request.client_id, " ".join(auth_request.scopes)
        )
        return InitResponse(
            auth_request_id=auth_request.id,
            email_sent=True,
            expires_in=self.auth_request_ttl,
            poll_interval=self.poll_interval,
        )

    @_tracked("confirm")
    def confirm(self, magic_token: str) -> AuthorizationRequest:
        """
        消费 magic link 并完成授权

        授权码先写入持久存储，再把请求标记为 authorized，
        保证任何 authorized 请求都有可兑换的授权码。
        """
        if not magic_token:
            raise InvalidLinkError("Invalid or expired magic link")

        auth_request_id = self.auth_requests.consume_magic_link(magic_token)
        if auth_request_id is None:
            logger.warning("magic link 无效或已使用 token=%s", mask_secret(magic_token))
            raise InvalidLinkError("Invalid or expired magic link")

        auth_request = self.auth_requests.get(auth_request_id)
        now = self.clock.now_ms()
        if auth_request is None or auth_request.expires_at < now:
            logger.warning("授权请求已过期 auth_request_id=%s", mask_secret(auth_request_id))
            raise RequestExpiredError("Authorization request expired")

        try:
            verification = self.directory.verify_email(auth_request.email)
        except Exception:
            logger.exception("客户目录查询失败 auth_request_id=%s", mask_secret(auth_request_id))
            verification = {"exists": False, "customer_id": None}

        if not verification.get("exists"):
            auth_request.status = AuthRequestStatus.DENIED
            auth_request.customer_id = verification.get("customer_id")
            self.auth_requests.save(auth_request)
            logger.warning("授权被拒绝，客户不存在 auth_request_id=%s", mask_secret(auth_request_id))
            raise CustomerNotFoundError("Customer not found")

        customer_id = verification["customer_id"]
        code = self.ids.auth_code()
        self.tokens.insert_auth_code(
            code=code,
            customer_email=auth_request.email,
            customer_id=customer_id,
            client_id=auth_request.client_id,
            scopes=auth_request.scopes,
            code_challenge=auth_request.code_challenge,
            expires_at=now + self.auth_code_ttl * 1000,
            created_at=now,
        )

        auth_request.status = AuthRequestStatus.AUTHORIZED
        auth_request.code = code
        auth_request.customer_id = customer_id
        self.auth_requests.save(auth_request)

        StructuredLogger.set_customer(customer_id)
        logger.info(
            "授权请求已批准 auth_request_id=%s customer_id=%s",
            mask_secret(auth_request_id), customer_id
        )
        return auth_request

    @_tracked("poll")
    def poll(self, auth_request_id: str, client_id: str) -> PollResponse:
        """查询授权请求状态（只读）"""
        if not auth_request_id or not client_id:
            raise InvalidRequestError("auth_request_id and client_id are required")

        auth_request = self.auth_requests.get(auth_request_id)
        if auth_request is None:
            return PollResponse(status="expired")

        if auth_request.client_id != client_id:
            logger.warning(
                "轮询 client_id 不匹配 auth_request_id=%s client_id=%s",
                mask_secret(auth_request_id), client_id
            )
            raise InvalidClientError("Client ID mismatch")

        now = self.clock.now_ms()
        if auth_request.expires_at < now:
            return PollResponse(status="expired")

        if auth_request.status == AuthRequestStatus.AUTHORIZED:
            return PollResponse(status=auth_request.status.value, code=auth_request.code)
        if auth_request.status == AuthRequestStatus.DENIED:
            return PollResponse(status=auth_request.status.value)
        return PollResponse(
            status=auth_request.status.value,
            expires_in=max(0, (auth_request.expires_at - now) // 1000),
        )

    # -------------------------------
    # 令牌端点
    # -------------------------------
    @_tracked("exchange")
    def exchange(self, code: str, code_verifier: str, client_id: str) -> TokenResponse:
        """
        授权码换令牌（authorization_code grant）

        校验全部通过后，以条件 UPDATE 翻转 used 作为兑换闸门；
        只有赢得翻转的调用才会签发令牌。
        """
        if not code or not code_verifier or not client_id:
            raise InvalidRequestError("code, code_verifier and client_id are required")

        row = self.tokens.fetch_unused_code(code)
        if row is None:
            logger.warning("授权码不存在或已使用 code=%s", mask_secret(code))
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        now = self.clock.now_ms()
        if row.expires_at < now:
            logger.warning("授权码已过期 code=%s", mask_secret(code))
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        if row.client_id != client_id:
            logger.warning("授权码 client_id 不匹配 code=%s client_id=%s", mask_secret(code), client_id)
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        if not verify_pkce(code_verifier, row.code_challenge):
            logger.warning("PKCE 校验失败 code=%s", mask_secret(code))
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        if not self.tokens.mark_code_used(code):
            logger.warning("授权码并发兑换失败（已被使用） code=%s", mask_secret(code))
            raise InvalidGrantError(INVALID_CODE_MESSAGE)

        scopes = decode_scopes(row.scopes)
        access_token = self.codec.issue_access_token(row.customer_id, row.customer_email, scopes)
        refresh_token = self.ids.refresh_token()
        self.tokens.insert_refresh_token(
            token=refresh_token,
            customer_email=row.customer_email,
            customer_id=row.customer_id,
            client_id=row.client_id,
            scopes=scopes,
            expires_at=now + self.refresh_token_ttl * 1000,
            created_at=now,
        )

        StructuredLogger.set_customer(row.customer_id)
        logger.info("授权码兑换成功 customer_id=%s client_id=%s", row.customer_id, client_id)
        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.codec.access_token_ttl,
            scope=" ".join(scopes),
            customer_id=row.customer_id,
            email=row.customer_email,
        )

    @_tracked("refresh")
    def refresh(self, refresh_token: str, client_id: str) -> TokenResponse:
        """刷新令牌换新访问令牌，并轮换刷新令牌"""
        if not refresh_token or not client_id:
            raise InvalidRequestError("refresh_token and client_id are required")

        row = self.tokens.get_refresh_token(refresh_token)
        if row is None:
            logger.warning("刷新令牌不存在 token=%s", mask_secret(refresh_token))
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        now = self.clock.now_ms()
        if row.expires_at < now:
            logger.warning("刷新令牌已过期 customer_id=%s", row.customer_id)
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        if row.client_id != client_id:
            logger.warning("刷新令牌 client_id 不匹配 customer_id=%s client_id=%s", row.customer_id, client_id)
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        scopes = decode_scopes(row.scopes)
        access_token = self.codec.issue_access_token(row.customer_id, row.customer_email, scopes)
        new_refresh_token = self.ids.refresh_token()

        if not self.tokens.rotate_refresh_token(row.id, refresh_token, new_refresh_token, now):
            logger.warning("刷新令牌并发轮换失败 customer_id=%s", row.customer_id)
            raise InvalidGrantError(INVALID_REFRESH_MESSAGE)

        StructuredLogger.set_customer(row.customer_id)
        logger.info("刷新令牌已轮换 customer_id=%s client_id=%s", row.customer_id, client_id)
        return TokenResponse(
            access_token=access_token,
            refresh_token=new_refresh_token,
            expires_in=self.codec.access_token_ttl,
            scope=" ".join(scopes),
        )

    @_tracked("revoke")
    def revoke(self, token: str) -> RevokeResponse:
        """撤销刷新令牌（幂等）"""
        if not token:
            raise InvalidRequestError("token is required")

        deleted = self.tokens.delete_refresh_token(token)
        logger.info("刷新令牌撤销 token=%s deleted=%d", mask_secret(token), deleted)
        return RevokeResponse()

    # -------------------------------
    # 清理
    # -------------------------------
    def purge_expired(self) -> dict:
        """清理过期授权码与刷新令牌"""
        return self.tokens.purge_expired(self.clock.now_ms())
