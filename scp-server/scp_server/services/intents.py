"""
意图折叠：把只追加的活动日志还原成意图对象。

同一 intent_id 的活动按日志顺序处理：created 活动建立意图，之后的活动
追加为里程碑；状态取最后一条带非空 status 的活动。
"""
from scp_server.repositories.intents import INTENT_CREATED

EVENT_PREFIX = "scp_intent_"
DEFAULT_MECHANISM = "conversational_ai"
DEFAULT_VISIBILITY = "merchant_only"


def _milestone(activity: dict) -> dict:
    data = activity["data"]
    return {
        "timestamp": activity["timestamp"],
        "event": activity["action"].removeprefix(EVENT_PREFIX),
        "details": data,
        "source": data.get("source") or "merchant",
    }


def fold_intents(customer_id: str, activities: list[dict]) -> list[dict]:
    """
    折叠活动日志

    Args:
        customer_id: 客户ID
        activities: 按写入顺序排列的 {action, data, timestamp}

    Returns:
        意图对象列表，按首次创建顺序排列
    """
    grouped: dict[str, dict] = {}

    for activity in activities:
        data = activity.get("data") or {}
        intent_id = data.get("intent_id")
        if not intent_id:
            continue

        if activity.get("action") == INTENT_CREATED:
            # 重复的 created 活动在原位置重新建立该意图，保留首次出现的顺序
            grouped[intent_id] = {"created": activity, "updates": []}
        elif intent_id in grouped:
            grouped[intent_id]["updates"].append(activity)

    intents = []
    for intent_id, entry in grouped.items():
        created = entry["created"]
        seed = created["data"]

        status = "created"
        updated_at = created["timestamp"]
        for update in entry["updates"]:
            if update["data"].get("status"):
                status = update["data"]["status"]
                updated_at = update["timestamp"]

        intents.append({
            "intent_id": intent_id,
            "customer_id": customer_id,
            "base_intent": seed.get("base_intent") or "",
            "mechanism": seed.get("mechanism") or DEFAULT_MECHANISM,
            "ai_assistant": seed.get("ai_assistant"),
            "ai_session_id": seed.get("ai_session_id"),
            "created_at": created["timestamp"],
            "updated_at": updated_at,
            "expires_at": seed.get("expires_at"),
            "status": status,
            "context": seed.get("context") or {},
            "visibility": seed.get("visibility") or DEFAULT_VISIBILITY,
            "shared_with": seed.get("shared_with"),
            "milestones": [_milestone(created)] + [_milestone(u) for u in entry["updates"]],
        })

    return intents
