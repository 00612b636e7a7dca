"""
临时键值存储：带逐键过期时间的 put / get / delete。

生产环境使用 Redis；开发与测试可使用进程内实现。两种实现都保证
pop（读取并删除）对单个键是原子的，这是 magic link 单次使用的前提。
"""
import threading
import time
from abc import ABC, abstractmethod

import redis

from scp_server.exceptions.handlers import StoreError
from scp_server.logging.config import get_structured_logger

logger = get_structured_logger(__name__)


class TransientStore(ABC):
    """临时存储抽象"""

    @abstractmethod
    def put(self, key: str, value: str, ttl: int) -> None:
        """写入键值，ttl 秒后过期"""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """读取键值，不存在或已过期返回 None"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """删除键（不存在时静默）"""

    @abstractmethod
    def pop(self, key: str) -> str | None:
        """原子地读取并删除键"""

    @abstractmethod
    def ping(self) -> bool:
        """连通性探测"""


class RedisTransientStore(TransientStore):
    """基于 Redis 的临时存储"""

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisTransientStore":
        """根据连接地址创建实例"""
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client)

    def put(self, key: str, value: str, ttl: int) -> None:
        try:
            self._client.set(key, value, ex=ttl)
        except redis.RedisError as e:
            logger.error("Redis写入失败 key=%s err=%s", key.split(":", 1)[0], str(e))
            raise StoreError(f"Transient store write failed: {e}")

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(key)
        except redis.RedisError as e:
            logger.error("Redis读取失败 key=%s err=%s", key.split(":", 1)[0], str(e))
            raise StoreError(f"Transient store read failed: {e}")

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            logger.error("Redis删除失败 key=%s err=%s", key.split(":", 1)[0], str(e))
            raise StoreError(f"Transient store delete failed: {e}")

    def pop(self, key: str) -> str | None:
        # GETDEL 需要 Redis >= 6.2
        try:
            return self._client.getdel(key)
        except redis.RedisError as e:
            logger.error("Redis GETDEL失败 key=%s err=%s", key.split(":", 1)[0], str(e))
            raise StoreError(f"Transient store pop failed: {e}")

    def ping(self) -> bool:
        """连接探测"""
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis连接失败: %s", str(e))
            return False


class MemoryTransientStore(TransientStore):
    """进程内临时存储（仅开发/测试，多进程部署下不可用）"""

    def __init__(self, clock=None):
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _now(self) -> float:
        if self._clock is not None:
            return self._clock.now_ms() / 1000
        return time.time()

    def put(self, key: str, value: str, ttl: int) -> None:
        with self._lock:
            self._data[key] = (value, self._now() + ttl)

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live_value(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def pop(self, key: str) -> str | None:
        with self._lock:
            value = self._live_value(key)
            self._data.pop(key, None)
            return value

    def ping(self) -> bool:
        return True

    def _live_value(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._now():
            del self._data[key]
            return None
        return value
