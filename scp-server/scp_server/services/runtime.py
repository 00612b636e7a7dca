"""
运行时依赖：时钟与随机源。

状态机中所有“当前时间”和随机标识都通过这里注入，测试可以替换为
可控实现，从而让授权流程的状态迁移完全可重现。
"""
import secrets
import time


class Clock:
    """系统时钟"""

    def now_ms(self) -> int:
        """当前时间（毫秒时间戳），用于存储中的 created_at / expires_at"""
        return int(time.time() * 1000)

    def now(self) -> int:
        """当前时间（秒），用于 JWT 的 iat / exp"""
        return self.now_ms() // 1000


class IdGenerator:
    """密码学安全的随机标识生成器"""

    def request_id(self) -> str:
        """授权请求 ID（128 位）"""
        return secrets.token_hex(16)

    def magic_token(self) -> str:
        """magic link 令牌（128 位）"""
        return secrets.token_hex(16)

    def auth_code(self) -> str:
        """授权码（128 位）"""
        return secrets.token_hex(16)

    def refresh_token(self) -> str:
        """刷新令牌（256 位，URL 安全）"""
        return secrets.token_urlsafe(32)

    def intent_suffix(self) -> str:
        """意图 ID 随机后缀"""
        return secrets.token_hex(5)
