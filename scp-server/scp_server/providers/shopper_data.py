"""
购物者数据提供方：订单、会员积分、优惠、偏好。

演示实现返回固定的小样本数据；返回 None 表示该客户没有对应资料，
由 RPC 层填充默认值。
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

from scp_server.services.runtime import Clock

DEMO_ORDERS = [
    {
        "order_id": "ORD-100231",
        "order_date": "2025-09-02T15:21:00Z",
        "status": "delivered",
        "total_amount": 209.98,
        "currency": "USD",
        "items": [
            {
                "sku": "BB-ARIAT-001",
                "name": "Ariat Heritage Western Boot",
                "brand": "Ariat",
                "category": "Boots",
                "quantity": 1,
                "price": 149.99,
                "attributes": {"size": "10", "color": "Brown"},
            },
            {
                "sku": "BB-WRANGLER-201",
                "name": "Wrangler 20X Competition Jean",
                "brand": "Wrangler",
                "category": "Jeans",
                "quantity": 1,
                "price": 59.99,
                "attributes": {"size": "32x34", "color": "Dark Wash"},
            },
        ],
        "shipping_address": {"street": "1200 Main St", "city": "Austin", "state": "TX", "zip": "78701", "country": "US"},
        "tracking_number": "1Z999AA10123456784",
        "estimated_delivery": "2025-09-06",
    },
    {
        "order_id": "ORD-100457",
        "order_date": "2025-09-20T10:05:00Z",
        "status": "shipped",
        "total_amount": 199.99,
        "currency": "USD",
        "items": [
            {
                "sku": "BB-STETSON-101",
                "name": "Stetson Skyline 6X Cowboy Hat",
                "brand": "Stetson",
                "category": "Hats",
                "quantity": 1,
                "price": 199.99,
                "attributes": {"size": "7 1/4", "color": "Silverbelly"},
            },
        ],
        "shipping_address": {"street": "1200 Main St", "city": "Austin", "state": "TX", "zip": "78701", "country": "US"},
        "tracking_number": "1Z999AA10123459911",
        "estimated_delivery": "2025-09-25",
    },
    {
        "order_id": "ORD-100812",
        "order_date": "2025-10-01T18:42:00Z",
        "status": "processing",
        "total_amount": 89.98,
        "currency": "USD",
        "items": [
            {
                "sku": "BB-ARIAT-301",
                "name": "Ariat Classic Western Shirt",
                "brand": "Ariat",
                "category": "Shirts",
                "quantity": 1,
                "price": 49.99,
                "attributes": {"size": "L", "color": "Blue Plaid"},
            },
            {
                "sku": "BB-NOCONA-401",
                "name": "Nocona Leather Belt",
                "brand": "Nocona",
                "category": "Belts",
                "quantity": 1,
                "price": 39.99,
                "attributes": {"size": "34", "color": "Brown"},
            },
        ],
        "shipping_address": {"street": "1200 Main St", "city": "Austin", "state": "TX", "zip": "78701", "country": "US"},
        "tracking_number": None,
        "estimated_delivery": "2025-10-08",
    },
]

DEMO_LOYALTY = {
    "program_name": "VIP Rewards",
    "member_since": "2024-03-14",
    "tier": "Silver",
    "points": 820,
    "lifetime_points": 1200,
    "benefits": ["Free shipping on orders over $50", "10% off regular prices", "Birthday discount"],
    "next_tier": {
        "name": "Gold",
        "points_needed": 1250,
        "benefits": ["All Silver benefits", "Free shipping on all orders", "15% off regular prices"],
    },
}

DEMO_PREFERENCES = {
    "sizes": {"shirt": "L", "pants": {"waist": 32, "inseam": 34}, "shoe": "10"},
    "favorite_brands": ["Ariat", "Stetson"],
    "style_preferences": ["Western", "Classic"],
    "communication": {"email_marketing": True, "sms_marketing": False, "push_notifications": False},
}


class ShopperDataProvider(ABC):
    """购物者数据接口"""

    @abstractmethod
    def get_orders(self, customer_id: str) -> list[dict]:
        """全部订单（新→旧），分页由调用方完成"""

    @abstractmethod
    def get_loyalty(self, customer_id: str) -> dict | None:
        """会员资料：program_name / member_since / tier / points / lifetime_points / benefits / next_tier"""

    @abstractmethod
    def get_offers(self, customer_id: str) -> list[dict]:
        """当前可用优惠"""

    @abstractmethod
    def get_preferences(self, customer_id: str) -> dict | None:
        """偏好设置"""


class DemoShopperDataProvider(ShopperDataProvider):
    """演示数据提供方"""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or Clock()

    def get_orders(self, customer_id: str) -> list[dict]:
        return sorted(DEMO_ORDERS, key=lambda o: o["order_date"], reverse=True)

    def get_loyalty(self, customer_id: str) -> dict | None:
        loyalty = dict(DEMO_LOYALTY)
        loyalty["member_id"] = "VIP-" + customer_id.removeprefix("cust_").upper()[:8]
        return loyalty

    def get_offers(self, customer_id: str) -> list[dict]:
        now = datetime.fromtimestamp(self._clock.now(), tz=timezone.utc)
        return [
            {
                "offer_id": "offer_001",
                "title": "15% Off Your Next Purchase",
                "description": "Use code SAVE15 at checkout",
                "discount_type": "percentage",
                "discount_value": 15,
                "code": "SAVE15",
                "expires_at": (now + timedelta(days=30)).isoformat().replace("+00:00", "Z"),
                "minimum_purchase": 50,
                "terms": "Valid on regular priced items only",
            },
            {
                "offer_id": "offer_002",
                "title": "Free Shipping",
                "description": "Free shipping on orders over $75",
                "discount_type": "shipping",
                "code": "FREESHIP",
                "minimum_purchase": 75,
                "terms": "Continental US only",
            },
        ]

    def get_preferences(self, customer_id: str) -> dict | None:
        return dict(DEMO_PREFERENCES)
