"""
依赖装配：按配置创建存储、协作方与服务实例（惰性单例）。

路由通过 FastAPI Depends 获取服务；测试用 app.dependency_overrides 替换。
"""
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from scp_server.config import TransientBackend, settings
from scp_server.db import build_engine, build_session_factory
from scp_server.logging.config import get_structured_logger
from scp_server.providers.directory import build_directory
from scp_server.providers.notifier import ResendMagicLinkNotifier
from scp_server.providers.shopper_data import DemoShopperDataProvider
from scp_server.repositories.auth_requests import AuthRequestRepository
from scp_server.repositories.intents import IntentRepository
from scp_server.repositories.oauth_tokens import TokenRepository
from scp_server.repositories.transient import (
    MemoryTransientStore,
    RedisTransientStore,
    TransientStore,
)
from scp_server.services.authorization import AuthorizationService
from scp_server.services.rpc import RPCDispatcher
from scp_server.services.runtime import Clock, IdGenerator
from scp_server.services.token_codec import TokenCodec

logger = get_structured_logger(__name__)

# 全局实例
_engine: Engine | None = None
_session_factory: sessionmaker | None = None
_transient_store: TransientStore | None = None
_authorization_service: AuthorizationService | None = None
_rpc_dispatcher: RPCDispatcher | None = None

_clock = Clock()
_ids = IdGenerator()


def get_engine() -> Engine:
    """数据库引擎（单例）"""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    """会话工厂（单例）"""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


def get_transient_store() -> TransientStore:
    """临时存储（单例）"""
    global _transient_store
    if _transient_store is None:
        if settings.transient_backend == TransientBackend.MEMORY:
            logger.warning("使用进程内临时存储，仅适用于单进程开发/测试")
            _transient_store = MemoryTransientStore(_clock)
        else:
            _transient_store = RedisTransientStore.from_url(settings.redis_url)
    return _transient_store


def get_token_codec() -> TokenCodec:
    """访问令牌编解码器"""
    return TokenCodec(settings.jwt_secret, _clock, settings.access_token_ttl)


def get_authorization_service() -> AuthorizationService:
    """授权服务（单例）"""
    global _authorization_service
    if _authorization_service is None:
        _authorization_service = AuthorizationService(
            auth_requests=AuthRequestRepository(get_transient_store(), settings.auth_request_ttl),
            tokens=TokenRepository(get_session_factory()),
            directory=build_directory(settings.directory_backend),
            notifier=ResendMagicLinkNotifier(
                api_key=settings.resend_api_key,
                email_from=settings.email_from,
                api_url=settings.email_api_url,
                timeout=settings.email_timeout,
            ),
            codec=get_token_codec(),
            public_url=settings.public_url,
            clock=_clock,
            ids=_ids,
            auth_request_ttl=settings.auth_request_ttl,
            auth_code_ttl=settings.auth_code_ttl,
            refresh_token_ttl=settings.refresh_token_ttl,
            poll_interval=settings.poll_interval,
        )
    return _authorization_service


def get_rpc_dispatcher() -> RPCDispatcher:
    """RPC 分发器（单例）"""
    global _rpc_dispatcher
    if _rpc_dispatcher is None:
        _rpc_dispatcher = RPCDispatcher(
            codec=get_token_codec(),
            shopper_data=DemoShopperDataProvider(_clock),
            intents=IntentRepository(get_session_factory()),
            clock=_clock,
            ids=_ids,
        )
    return _rpc_dispatcher
