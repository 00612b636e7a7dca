"""RPC 分发器单元测试"""
from unittest.mock import Mock

import pytest

from scp_server.exceptions.handlers import RPCError, StoreError
from scp_server.providers.shopper_data import ShopperDataProvider
from scp_server.services.rpc import METHODS, RPCDispatcher

ALL_SCOPES = [
    "orders", "loyalty", "offers", "preferences",
    "intent:read", "intent:create", "intent:write", "intent:delete",
]


def call(dispatcher, token, method, params=None, request_id=1):
    request = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        request["params"] = params
    return dispatcher.handle(token, request)


class EmptyShopperData(ShopperDataProvider):
    """没有任何资料的客户"""

    def get_orders(self, customer_id):
        return []

    def get_loyalty(self, customer_id):
        return None

    def get_offers(self, customer_id):
        return []

    def get_preferences(self, customer_id):
        return None


class TestEnvelope:
    """响应信封与错误码测试类"""

    def test_success_envelope(self, rpc_dispatcher, access_token_for):
        response = call(rpc_dispatcher, access_token_for(["offers"]), "scp.get_offers", request_id="abc")
        assert response["jsonrpc"] == "2.0"
        assert response["id"] == "abc"
        assert "result" in response
        assert "error" not in response

    def test_not_an_object(self, rpc_dispatcher, access_token_for):
        response = rpc_dispatcher.handle(access_token_for(ALL_SCOPES), [1, 2])
        assert response == {"jsonrpc": "2.0", "id": None, "error": {"code": -32600, "message": "Invalid Request"}}

    def test_missing_method(self, rpc_dispatcher, access_token_for):
        response = rpc_dispatcher.handle(access_token_for(ALL_SCOPES), {"jsonrpc": "2.0", "id": 7})
        assert response["id"] == 7
        assert response["error"]["code"] == RPCError.INVALID_REQUEST

    def test_unknown_method(self, rpc_dispatcher, access_token_for):
        response = call(rpc_dispatcher, access_token_for(ALL_SCOPES), "scp.delete_everything")
        assert response["error"]["code"] == RPCError.METHOD_NOT_FOUND

    def test_invalid_params_type(self, rpc_dispatcher, access_token_for):
        response = call(rpc_dispatcher, access_token_for(ALL_SCOPES), "scp.get_orders", params=[1])
        assert response["error"]["code"] == RPCError.INVALID_PARAMS

    @pytest.mark.parametrize("token", ["garbage", "a.b.c"])
    def test_bad_token(self, rpc_dispatcher, token):
        response = call(rpc_dispatcher, token, "scp.get_orders")
        assert response["error"]["code"] == RPCError.UNAUTHORIZED

    def test_missing_token(self, rpc_dispatcher):
        response = call(rpc_dispatcher, None, "scp.get_orders")
        assert response["error"]["code"] == RPCError.UNAUTHORIZED

    def test_expired_token(self, rpc_dispatcher, access_token_for, clock):
        """测试过期令牌返回 -32000"""
        token = access_token_for(["orders"])
        clock.advance(3600)
        response = call(rpc_dispatcher, token, "scp.get_orders")
        assert response["error"]["code"] == RPCError.UNAUTHORIZED
        assert response["error"]["data"] == {"reason": "token_expired"}

    def test_token_without_scopes_claim(self, rpc_dispatcher, codec, clock):
        token = codec.sign({"sub": "cust_1", "exp": clock.now() + 60})
        response = call(rpc_dispatcher, token, "scp.get_orders")
        assert response["error"]["code"] == RPCError.UNAUTHORIZED

    @pytest.mark.parametrize("method", sorted(METHODS))
    def test_scope_required(self, rpc_dispatcher, access_token_for, method):
        """测试每个方法都要求对应 scope"""
        required = METHODS[method][0]
        granted = [s for s in ALL_SCOPES if s != required]

        response = call(rpc_dispatcher, access_token_for(granted), method, {"intent_id": "i1", "base_intent": "x"})

        assert response["error"]["code"] == RPCError.FORBIDDEN
        assert response["error"]["message"] == f"Forbidden: missing scope '{required}'"
        assert response["error"]["data"] == {"required_scope": required}

    def test_internal_error_hidden(self, rpc_dispatcher, access_token_for):
        """测试内部错误不泄露细节"""
        rpc_dispatcher.intents = Mock()
        rpc_dispatcher.intents.list_activities.side_effect = StoreError("db password=secret unreachable")

        response = call(rpc_dispatcher, access_token_for(["intent:read"]), "scp.get_intents")

        assert response["error"] == {"code": RPCError.INTERNAL_ERROR, "message": "Internal error"}


class TestShopperData:
    """购物者数据方法测试类"""

    def test_get_orders_pagination(self, rpc_dispatcher, access_token_for):
        token = access_token_for(["orders"])

        result = call(rpc_dispatcher, token, "scp.get_orders", {"limit": 2})["result"]
        assert len(result["orders"]) == 2
        assert result["pagination"] == {"total": 3, "limit": 2, "offset": 0, "has_more": True}

        result = call(rpc_dispatcher, token, "scp.get_orders", {"limit": 2, "offset": 2})["result"]
        assert len(result["orders"]) == 1
        assert result["pagination"]["has_more"] is False

    def test_get_orders_defaults(self, rpc_dispatcher, access_token_for):
        result = call(rpc_dispatcher, access_token_for(["orders"]), "scp.get_orders")["result"]
        assert result["pagination"]["limit"] == 25
        assert result["pagination"]["offset"] == 0

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": "5"}, {"offset": -1}, {"limit": True}])
    def test_get_orders_bad_paging(self, rpc_dispatcher, access_token_for, params):
        response = call(rpc_dispatcher, access_token_for(["orders"]), "scp.get_orders", params)
        assert response["error"]["code"] == RPCError.INVALID_PARAMS

    def test_get_loyalty(self, rpc_dispatcher, access_token_for):
        result = call(rpc_dispatcher, access_token_for(["loyalty"]), "scp.get_loyalty")["result"]
        loyalty = result["loyalty"]
        assert loyalty["tier"] == "Silver"
        assert loyalty["points"] == {"current": 820, "lifetime": 1200, "currency_value": 8.2}
        assert loyalty["next_tier"]["name"] == "Gold"
        assert loyalty["member_id"].startswith("VIP-")

    def test_defaults_when_no_profile(self, rpc_dispatcher, access_token_for):
        """测试客户无资料时的默认值"""
        rpc_dispatcher.shopper_data = EmptyShopperData()
        token = access_token_for(["loyalty", "preferences"], customer_id="cust_new")

        loyalty = call(rpc_dispatcher, token, "scp.get_loyalty")["result"]["loyalty"]
        assert loyalty["tier"] == "Bronze"
        assert loyalty["member_id"] == "cust_new"
        assert loyalty["member_since"] == "2025-01-01"
        assert loyalty["points"]["currency_value"] == 0

        preferences = call(rpc_dispatcher, token, "scp.get_preferences")["result"]["preferences"]
        assert preferences == {
            "communication": {"email_marketing": False, "sms_marketing": False, "push_notifications": False}
        }

    def test_get_offers(self, rpc_dispatcher, access_token_for):
        offers = call(rpc_dispatcher, access_token_for(["offers"]), "scp.get_offers")["result"]["offers"]
        assert [o["offer_id"] for o in offers] == ["offer_001", "offer_002"]
        assert offers[0]["expires_at"].startswith("2025-01-31")


class TestIntents:
    """意图方法测试类"""

    @pytest.fixture
    def token(self, access_token_for):
        return access_token_for(["intent:read", "intent:create", "intent:write"], customer_id="cust_intent")

    def test_create_and_get(self, rpc_dispatcher, token):
        created = call(rpc_dispatcher, token, "scp.create_intent", {
            "base_intent": "Find waterproof boots",
            "ai_assistant": "assistant-x",
            "context": {"budget": 200},
        })["result"]

        assert created["intent_id"] == "intent_1735689600000_s0001"
        assert created["customer_id"] == "cust_intent"
        assert created["status"] == "created"
        assert created["created_at"] == "2025-01-01T00:00:00.000Z"

        result = call(rpc_dispatcher, token, "scp.get_intents")["result"]
        assert result["pagination"] == {"total": 1, "limit": 10, "offset": 0, "has_more": False}
        intent = result["intents"][0]
        assert intent["base_intent"] == "Find waterproof boots"
        assert intent["ai_assistant"] == "assistant-x"
        assert intent["context"] == {"budget": 200}
        assert intent["status"] == "created"

    def test_create_with_client_intent_id(self, rpc_dispatcher, token):
        created = call(rpc_dispatcher, token, "scp.create_intent", {"base_intent": "x", "intent_id": "my-intent"})
        assert created["result"]["intent_id"] == "my-intent"

    def test_create_requires_base_intent(self, rpc_dispatcher, token):
        response = call(rpc_dispatcher, token, "scp.create_intent", {})
        assert response["error"]["code"] == RPCError.INVALID_PARAMS

    def test_update_and_fulfill(self, rpc_dispatcher, token, clock):
        """测试更新与完成后状态和里程碑"""
        call(rpc_dispatcher, token, "scp.create_intent", {"base_intent": "x", "intent_id": "i1"})

        clock.advance(10)
        updated = call(rpc_dispatcher, token, "scp.update_intent", {
            "intent_id": "i1",
            "add_milestone": {"note": "shortlisted"},
        })["result"]
        assert updated["status"] == "active"
        assert updated["updated_at"] == "2025-01-01T00:00:10.000Z"

        clock.advance(10)
        fulfilled = call(rpc_dispatcher, token, "scp.fulfill_intent", {
            "intent_id": "i1",
            "order_ids": ["ORD-1"],
        })["result"]
        assert fulfilled == {
            "intent_id": "i1",
            "status": "fulfilled",
            "fulfilled_at": "2025-01-01T00:00:20.000Z",
        }

        intent = call(rpc_dispatcher, token, "scp.get_intents")["result"]["intents"][0]
        assert intent["status"] == "fulfilled"
        assert intent["updated_at"] == "2025-01-01T00:00:20.000Z"
        assert len(intent["milestones"]) == 3
        assert intent["milestones"][1]["details"]["milestone"] == {"note": "shortlisted"}
        assert intent["milestones"][2]["details"]["context"] == {"fulfillment_type": "purchase", "order_ids": ["ORD-1"]}

    @pytest.mark.parametrize("method", ["scp.update_intent", "scp.fulfill_intent"])
    def test_intent_id_required(self, rpc_dispatcher, token, method):
        response = call(rpc_dispatcher, token, method, {"status": "active"})
        assert response["error"]["code"] == RPCError.INVALID_PARAMS

    def test_get_intents_filter_and_paging(self, rpc_dispatcher, token):
        for intent_id in ("i1", "i2", "i3"):
            call(rpc_dispatcher, token, "scp.create_intent", {"base_intent": "x", "intent_id": intent_id})
        call(rpc_dispatcher, token, "scp.update_intent", {"intent_id": "i2", "status": "active"})
        call(rpc_dispatcher, token, "scp.fulfill_intent", {"intent_id": "i3"})

        result = call(rpc_dispatcher, token, "scp.get_intents", {"status": "active"})["result"]
        assert [i["intent_id"] for i in result["intents"]] == ["i2"]

        result = call(rpc_dispatcher, token, "scp.get_intents", {"status": ["created", "fulfilled"]})["result"]
        assert [i["intent_id"] for i in result["intents"]] == ["i1", "i3"]

        result = call(rpc_dispatcher, token, "scp.get_intents", {"limit": 1, "offset": 1})["result"]
        assert [i["intent_id"] for i in result["intents"]] == ["i2"]
        assert result["pagination"] == {"total": 3, "limit": 1, "offset": 1, "has_more": True}

    def test_intents_scoped_to_customer(self, rpc_dispatcher, token, access_token_for):
        call(rpc_dispatcher, token, "scp.create_intent", {"base_intent": "x"})
        other = access_token_for(["intent:read"], customer_id="cust_other")
        assert call(rpc_dispatcher, other, "scp.get_intents")["result"]["intents"] == []


def test_default_clock_and_ids(codec, intent_repo):
    dispatcher = RPCDispatcher(codec=codec, shopper_data=EmptyShopperData(), intents=intent_repo)
    assert dispatcher.clock is not None
    assert dispatcher.ids is not None
