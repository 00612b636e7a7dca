"""
JSON-RPC 2.0 分发：访问令牌校验、scope 检查、方法路由。

handle() 永远返回 {"jsonrpc": "2.0", "id": ..., "result" | "error"}，
不向调用方抛出异常；内部错误细节只写日志。
"""
import time
from datetime import datetime, timezone

from scp_server.exceptions.handlers import ForbiddenScopeError, RPCError, TokenError
from scp_server.logging.config import StructuredLogger, get_structured_logger
from scp_server.models.oauth import Scope
from scp_server.monitoring.metrics import metrics_collector
from scp_server.monitoring.tracing import get_tracing_helper
from scp_server.providers.shopper_data import ShopperDataProvider
from scp_server.repositories.intents import INTENT_CREATED, INTENT_UPDATED, IntentRepository
from scp_server.services.intents import DEFAULT_MECHANISM, DEFAULT_VISIBILITY, fold_intents
from scp_server.services.runtime import Clock, IdGenerator
from scp_server.services.token_codec import TokenCodec

logger = get_structured_logger(__name__)

JSONRPC_VERSION = "2.0"

# 方法名 → (所需 scope, 处理函数名)
METHODS = {
    "scp.get_orders": (Scope.ORDERS.value, "get_orders"),
    "scp.get_loyalty": (Scope.LOYALTY.value, "get_loyalty"),
    "scp.get_offers": (Scope.OFFERS.value, "get_offers"),
    "scp.get_preferences": (Scope.PREFERENCES.value, "get_preferences"),
    "scp.create_intent": (Scope.INTENT_CREATE.value, "create_intent"),
    "scp.get_intents": (Scope.INTENT_READ.value, "get_intents"),
    "scp.update_intent": (Scope.INTENT_WRITE.value, "update_intent"),
    "scp.fulfill_intent": (Scope.INTENT_WRITE.value, "fulfill_intent"),
}


def error_envelope(request_id, rpc_code: int, message: str, data: dict = None) -> dict:
    """构造错误响应"""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": RPCError(rpc_code, message, data).to_dict(),
    }


def _int_param(params: dict, name: str, default: int, minimum: int) -> int:
    value = params.get(name)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise RPCError(RPCError.INVALID_PARAMS, f"Invalid params: '{name}' must be an integer >= {minimum}")
    return value


def _required_str(params: dict, name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str) or not value:
        raise RPCError(RPCError.INVALID_PARAMS, f"Invalid params: '{name}' is required")
    return value


def _paginate(items: list, limit: int, offset: int) -> tuple[list, dict]:
    page = items[offset:offset + limit]
    return page, {
        "total": len(items),
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(page) < len(items),
    }


class RPCDispatcher:
    """SCP 数据方法分发器"""

    def __init__(
        self,
        codec: TokenCodec,
        shopper_data: ShopperDataProvider,
        intents: IntentRepository,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
    ):
        self.codec = codec
        self.shopper_data = shopper_data
        self.intents = intents
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()

    def handle(self, access_token: str | None, request) -> dict:
        """处理单个 JSON-RPC 请求"""
        if not isinstance(request, dict):
            metrics_collector.record_rpc_request("invalid", str(RPCError.INVALID_REQUEST))
            return error_envelope(None, RPCError.INVALID_REQUEST, "Invalid Request")

        request_id = request.get("id")
        method = request.get("method")
        method_label = method if method in METHODS else "unknown"

        attributes = {"rpc.system": "jsonrpc", "rpc.method": method_label}
        try:
            with get_tracing_helper().trace_operation(f"rpc.{method_label}", attributes):
                result = self._dispatch(access_token, method, request.get("params"))
        except RPCError as e:
            metrics_collector.record_rpc_request(method_label, str(e.rpc_code))
            return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": e.to_dict()}
        except Exception:
            logger.exception("RPC 内部错误 method=%s", method_label)
            metrics_collector.record_rpc_request(method_label, str(RPCError.INTERNAL_ERROR))
            return error_envelope(request_id, RPCError.INTERNAL_ERROR, "Internal error")

        metrics_collector.record_rpc_request(method_label, "success")
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

    def _dispatch(self, access_token: str | None, method, params):
        if not isinstance(method, str) or not method:
            raise RPCError(RPCError.INVALID_REQUEST, "Invalid Request: 'method' is required")

        customer_id, scopes = self._authenticate(access_token)

        if method not in METHODS:
            raise RPCError(RPCError.METHOD_NOT_FOUND, "Method not found")

        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise RPCError(RPCError.INVALID_PARAMS, "Invalid params: expected an object")

        required_scope, handler_name = METHODS[method]
        try:
            self._check_scope(scopes, required_scope)
        except ForbiddenScopeError as e:
            logger.warning("RPC scope 不足 method=%s required=%s", method, e.scope)
            raise RPCError(RPCError.FORBIDDEN, e.message, e.details)

        logger.info("RPC 调用 method=%s customer_id=%s", method, customer_id)
        return getattr(self, handler_name)(customer_id, params)

    def _authenticate(self, access_token: str | None) -> tuple[str, list[str]]:
        if not access_token:
            raise RPCError(RPCError.UNAUTHORIZED, "Missing access token")

        started = time.perf_counter()
        try:
            claims = self.codec.verify(access_token)
        except TokenError as e:
            logger.warning("访问令牌无效 reason=%s", e.error_code)
            raise RPCError(RPCError.UNAUTHORIZED, e.message, {"reason": e.error_code})
        finally:
            metrics_collector.record_token_validation(time.perf_counter() - started)

        customer_id = claims.get("sub")
        scopes = claims.get("scopes")
        if not isinstance(customer_id, str) or not isinstance(scopes, list):
            raise RPCError(RPCError.UNAUTHORIZED, "Invalid token format", {"reason": "malformed_token"})

        StructuredLogger.set_customer(customer_id)
        return customer_id, scopes

    @staticmethod
    def _check_scope(scopes: list[str], required: str) -> None:
        if required not in scopes:
            raise ForbiddenScopeError(required)

    def _iso_now(self) -> str:
        moment = datetime.fromtimestamp(self.clock.now_ms() / 1000, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    # -------------------------------
    # 购物者数据
    # -------------------------------
    def get_orders(self, customer_id: str, params: dict) -> dict:
        limit = _int_param(params, "limit", 25, 1)
        offset = _int_param(params, "offset", 0, 0)
        orders, pagination = _paginate(self.shopper_data.get_orders(customer_id), limit, offset)
        return {"orders": orders, "pagination": pagination}

    def get_loyalty(self, customer_id: str, params: dict) -> dict:
        loyalty = self.shopper_data.get_loyalty(customer_id)
        if not loyalty:
            return {
                "loyalty": {
                    "program_name": "Rewards Program",
                    "member_id": customer_id,
                    "member_since": self._iso_now()[:10],
                    "tier": "Bronze",
                    "points": {"current": 0, "lifetime": 0, "currency_value": 0},
                    "benefits": ["Points on every purchase"],
                }
            }

        points = loyalty.get("points", 0)
        return {
            "loyalty": {
                "program_name": loyalty.get("program_name"),
                "member_id": loyalty.get("member_id"),
                "member_since": loyalty.get("member_since"),
                "tier": loyalty.get("tier"),
                "points": {
                    "current": points,
                    "lifetime": loyalty.get("lifetime_points"),
                    # 1 积分 = 0.01 货币单位
                    "currency_value": round(points * 0.01, 2),
                },
                "benefits": loyalty.get("benefits", []),
                "next_tier": loyalty.get("next_tier"),
            }
        }

    def get_offers(self, customer_id: str, params: dict) -> dict:
        return {"offers": self.shopper_data.get_offers(customer_id)}

    def get_preferences(self, customer_id: str, params: dict) -> dict:
        preferences = self.shopper_data.get_preferences(customer_id)
        if not preferences:
            preferences = {
                "communication": {
                    "email_marketing": False,
                    "sms_marketing": False,
                    "push_notifications": False,
                }
            }
        return {"preferences": preferences}

    # -------------------------------
    # 意图
    # -------------------------------
    def create_intent(self, customer_id: str, params: dict) -> dict:
        base_intent = _required_str(params, "base_intent")
        intent_id = params.get("intent_id") or f"intent_{self.clock.now_ms()}_{self.ids.intent_suffix()}"
        if not isinstance(intent_id, str):
            raise RPCError(RPCError.INVALID_PARAMS, "Invalid params: 'intent_id' must be a string")

        created_at = self._iso_now()
        data = {
            "intent_id": intent_id,
            "base_intent": base_intent,
            "mechanism": params.get("mechanism") or DEFAULT_MECHANISM,
            "ai_assistant": params.get("ai_assistant"),
            "ai_session_id": params.get("ai_session_id"),
            "context": params.get("context") or {},
            "visibility": params.get("visibility") or DEFAULT_VISIBILITY,
            "expires_at": params.get("expires_at"),
            "status": "created",
            "source": "ai_assistant",
        }
        self.intents.append_activity(customer_id, INTENT_CREATED, data, created_at)

        logger.info("意图已创建 intent_id=%s customer_id=%s", intent_id, customer_id)
        return {
            "intent_id": intent_id,
            "customer_id": customer_id,
            "created_at": created_at,
            "status": "created",
        }

    def get_intents(self, customer_id: str, params: dict) -> dict:
        limit = _int_param(params, "limit", 10, 1)
        offset = _int_param(params, "offset", 0, 0)

        intents = fold_intents(customer_id, self.intents.list_activities(customer_id))

        status = params.get("status")
        if status:
            wanted = status if isinstance(status, list) else [status]
            intents = [i for i in intents if i["status"] in wanted]

        page, pagination = _paginate(intents, limit, offset)
        return {"intents": page, "pagination": pagination}

    def update_intent(self, customer_id: str, params: dict) -> dict:
        intent_id = _required_str(params, "intent_id")
        updated_at = self._iso_now()

        data = {
            "intent_id": intent_id,
            "status": params.get("status"),
            "milestone": params.get("add_milestone"),
            "context": params.get("context"),
            "source": "ai_assistant",
        }
        data = {k: v for k, v in data.items() if v is not None}
        self.intents.append_activity(customer_id, INTENT_UPDATED, data, updated_at)

        logger.info("意图已更新 intent_id=%s status=%s", intent_id, params.get("status"))
        return {
            "intent_id": intent_id,
            "updated_at": updated_at,
            "status": params.get("status") or "active",
        }

    def fulfill_intent(self, customer_id: str, params: dict) -> dict:
        intent_id = _required_str(params, "intent_id")
        fulfilled_at = self._iso_now()

        context = {
            "fulfillment_type": params.get("fulfillment_type") or "purchase",
            "order_ids": params.get("order_ids"),
            "notes": params.get("notes"),
        }
        data = {
            "intent_id": intent_id,
            "status": "fulfilled",
            "context": {k: v for k, v in context.items() if v is not None},
            "source": "ai_assistant",
        }
        self.intents.append_activity(customer_id, INTENT_UPDATED, data, fulfilled_at)

        logger.info("意图已完成 intent_id=%s", intent_id)
        return {
            "intent_id": intent_id,
            "status": "fulfilled",
            "fulfilled_at": fulfilled_at,
        }
