"""pytest配置文件"""
import os
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

# 设置测试环境变量（必须在导入应用之前）
os.environ["ENVIRONMENT"] = "testing"
os.environ["JWT_SECRET"] = "test_jwt_secret_for_scp_server_0123456789abcdef"
os.environ["PUBLIC_URL"] = "http://testserver"
os.environ["TRANSIENT_BACKEND"] = "memory"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("SENTRY_DSN", None)

from scp_server.db import build_engine, build_session_factory, create_tables
from scp_server.dependencies import (
    get_authorization_service,
    get_engine,
    get_rpc_dispatcher,
    get_transient_store,
)
from scp_server.exceptions.handlers import ExternalServiceError
from scp_server.logging.config import StructuredLogger
from scp_server.main import app
from scp_server.providers.directory import DemoCustomerDirectory
from scp_server.providers.notifier import MagicLinkNotifier
from scp_server.providers.shopper_data import DemoShopperDataProvider
from scp_server.repositories.auth_requests import AuthRequestRepository
from scp_server.repositories.intents import IntentRepository
from scp_server.repositories.oauth_tokens import TokenRepository
from scp_server.repositories.transient import MemoryTransientStore
from scp_server.services.authorization import AuthorizationService
from scp_server.services.pkce import compute_s256_challenge
from scp_server.services.rpc import RPCDispatcher
from scp_server.services.runtime import Clock, IdGenerator
from scp_server.services.token_codec import TokenCodec

TEST_SECRET = os.environ["JWT_SECRET"]

# 固定的 PKCE verifier；challenge 由 S256 变换得到
PKCE_VERIFIER = "dBjftJeZ4CVP-mJ92ZMgfbfqaudsYzFpKr1KHOOAXwg"
PKCE_CHALLENGE = compute_s256_challenge(PKCE_VERIFIER)

CLIENT_ID = "agent-client"
UNKNOWN_EMAIL = "nobody@example.com"

# 2025-01-01T00:00:00Z
START_MS = 1_735_689_600_000


class FakeClock(Clock):
    """可控时钟"""

    def __init__(self, start_ms: int = START_MS):
        self.current_ms = start_ms

    def now_ms(self) -> int:
        return self.current_ms

    def advance(self, seconds: float) -> None:
        self.current_ms += int(seconds * 1000)


class SequentialIds(IdGenerator):
    """可预测的标识生成器"""

    def __init__(self):
        self._counter = 0

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:04d}"

    def request_id(self) -> str:
        return self._next("req")

    def magic_token(self) -> str:
        return self._next("magic")

    def auth_code(self) -> str:
        return self._next("code")

    def refresh_token(self) -> str:
        return self._next("refresh")

    def intent_suffix(self) -> str:
        return self._next("s")


class RecordingNotifier(MagicLinkNotifier):
    """记录发送内容的通知器，可模拟投递失败"""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send(self, email: str, merchant_name: str, link: str) -> None:
        if self.fail:
            raise ExternalServiceError("Failed to send email", "email_delivery_failed")
        self.sent.append({"email": email, "merchant_name": merchant_name, "link": link})

    def last_token(self) -> str:
        """从最近一封邮件的链接中取出 magic link 令牌"""
        query = parse_qs(urlparse(self.sent[-1]["link"]).query)
        return query["token"][0]


@pytest.fixture(scope="session")
def setup_test_logging():
    """设置测试日志"""
    StructuredLogger.setup_logging(log_level="DEBUG", enable_json=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids():
    return SequentialIds()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine():
    """独立的内存数据库"""
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def transient_store(clock):
    return MemoryTransientStore(clock)


@pytest.fixture
def auth_request_repo(transient_store):
    return AuthRequestRepository(transient_store, ttl=600)


@pytest.fixture
def token_repo(session_factory):
    return TokenRepository(session_factory)


@pytest.fixture
def intent_repo(session_factory):
    return IntentRepository(session_factory)


@pytest.fixture
def codec(clock):
    return TokenCodec(TEST_SECRET, clock, access_token_ttl=3600)


@pytest.fixture
def directory():
    return DemoCustomerDirectory(unknown_emails={UNKNOWN_EMAIL})


@pytest.fixture
def auth_service(auth_request_repo, token_repo, directory, notifier, codec, clock, ids):
    """使用可控依赖装配的授权服务"""
    return AuthorizationService(
        auth_requests=auth_request_repo,
        tokens=token_repo,
        directory=directory,
        notifier=notifier,
        codec=codec,
        public_url="http://testserver",
        clock=clock,
        ids=ids,
    )


@pytest.fixture
def rpc_dispatcher(codec, intent_repo, clock, ids):
    return RPCDispatcher(
        codec=codec,
        shopper_data=DemoShopperDataProvider(clock),
        intents=intent_repo,
        clock=clock,
        ids=ids,
    )


@pytest.fixture
def client(setup_test_logging, auth_service, rpc_dispatcher, transient_store, engine):
    """测试客户端（依赖替换为可控实现）"""
    app.dependency_overrides[get_authorization_service] = lambda: auth_service
    app.dependency_overrides[get_rpc_dispatcher] = lambda: rpc_dispatcher
    app.dependency_overrides[get_transient_store] = lambda: transient_store
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def init_payload():
    """示例授权初始化请求"""
    return {
        "email": "shopper@example.com",
        "client_id": CLIENT_ID,
        "client_name": "Shopping Assistant",
        "scopes": ["orders", "loyalty", "intent:read", "intent:create", "intent:write"],
        "code_challenge": PKCE_CHALLENGE,
        "code_challenge_method": "S256",
        "domain": "Demo Store",
    }


@pytest.fixture
def authorized_code(auth_service, notifier, init_payload):
    """走完 init + confirm，返回可兑换的授权码"""
    from scp_server.models.oauth import InitRequest

    auth_service.init(InitRequest(**init_payload))
    auth_request = auth_service.confirm(notifier.last_token())
    return auth_request.code


@pytest.fixture
def access_token_for(codec):
    """按 scope 签发访问令牌"""
    def issue(scopes, customer_id="cust_test", email="shopper@example.com"):
        return codec.issue_access_token(customer_id, email, scopes)
    return issue
