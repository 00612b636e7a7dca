"""
意图活动日志：只追加写入，按客户读取
"""
import json

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from scp_server.db import IntentActivity
from scp_server.exceptions.handlers import StoreError
from scp_server.logging.config import get_structured_logger

logger = get_structured_logger(__name__)

INTENT_CREATED = "scp_intent_created"
INTENT_UPDATED = "scp_intent_updated"


class IntentRepository:
    """intent_activities 表访问"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def append_activity(self, customer_id: str, action: str, data: dict, timestamp: str) -> None:
        """追加一条活动记录，data 中必须带 intent_id"""
        row = IntentActivity(
            customer_id=customer_id,
            intent_id=data["intent_id"],
            action=action,
            data=json.dumps(data),
            timestamp=timestamp,
        )
        try:
            with self._session_factory.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error("写入意图活动失败 customer_id=%s err=%s", customer_id, str(e))
            raise StoreError(f"Failed to append intent activity: {e}")

    def list_activities(self, customer_id: str) -> list[dict]:
        """按写入顺序返回客户的全部活动 {action, data, timestamp}"""
        try:
            with self._session_factory() as session:
                rows = session.scalars(
                    select(IntentActivity)
                    .where(IntentActivity.customer_id == customer_id)
                    .order_by(IntentActivity.id)
                ).all()
        except SQLAlchemyError as e:
            logger.error("读取意图活动失败 customer_id=%s err=%s", customer_id, str(e))
            raise StoreError(f"Failed to list intent activities: {e}")

        activities = []
        for row in rows:
            try:
                data = json.loads(row.data)
            except json.JSONDecodeError:
                logger.warning("意图活动数据损坏，已跳过 activity_id=%s", row.id)
                continue
            activities.append({"action": row.action, "data": data, "timestamp": row.timestamp})
        return activities
