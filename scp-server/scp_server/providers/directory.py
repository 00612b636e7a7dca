"""
客户目录：把 email 解析为客户ID。

演示实现对任意合法 email 都生成稳定的客户ID（同一 email 永远得到同一个 ID），
生产部署替换为真实的会员系统查询。
"""
import hashlib
from abc import ABC, abstractmethod

from scp_server.logging.config import get_structured_logger, mask_secret

logger = get_structured_logger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def customer_id_for_email(email: str) -> str:
    """email → cust_<base36>，大小写不敏感"""
    digest = hashlib.sha256(email.strip().lower().encode("utf-8")).digest()
    return "cust_" + _base36(int.from_bytes(digest[:6], "big"))


class CustomerDirectory(ABC):
    """客户目录接口"""

    @abstractmethod
    def verify_email(self, email: str) -> dict:
        """
        校验 email 是否对应已知客户

        Returns:
            {"exists": bool, "customer_id": str | None}

        Raises:
            ExternalServiceError: 目录服务不可用
        """

    @abstractmethod
    def get_customer(self, customer_id: str) -> dict | None:
        """按客户ID读取客户资料"""


class DemoCustomerDirectory(CustomerDirectory):
    """演示目录：所有合法 email 均视为已注册客户"""

    def __init__(self, unknown_emails: set[str] | None = None):
        self._unknown = {e.lower() for e in (unknown_emails or set())}

    def verify_email(self, email: str) -> dict:
        if not email or "@" not in email:
            return {"exists": False, "customer_id": None}
        if email.lower() in self._unknown:
            logger.info("目录中不存在该客户 email=%s", mask_secret(email, keep=2))
            return {"exists": False, "customer_id": None}
        return {"exists": True, "customer_id": customer_id_for_email(email)}

    def get_customer(self, customer_id: str) -> dict | None:
        if not customer_id or not customer_id.startswith("cust_"):
            return None
        suffix = customer_id[len("cust_"):]
        return {
            "customer_id": customer_id,
            "email": f"customer_{suffix}@example.com",
            "first_name": "Demo",
            "last_name": "Shopper",
        }


DIRECTORY_BACKENDS = {
    "demo": DemoCustomerDirectory,
}


def build_directory(backend: str) -> CustomerDirectory:
    """按配置名称创建客户目录实现"""
    directory_cls = DIRECTORY_BACKENDS.get((backend or "").lower())
    if directory_cls is None:
        raise ValueError(f"unsupported directory backend: {backend}")
    return directory_cls()
