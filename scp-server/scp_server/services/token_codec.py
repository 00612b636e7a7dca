"""
访问令牌编解码：HS256 签名的紧凑 JWT（header.payload.signature）。

签名算法固定，不做算法协商；头部声明其他算法的令牌一律按签名无效处理。
过期判断使用注入的时钟显式比较 exp，而不是依赖库内部的系统时间。
"""
import jwt

from scp_server.exceptions.handlers import TokenError
from scp_server.logging.config import get_structured_logger
from scp_server.services.runtime import Clock

logger = get_structured_logger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access_token"

# 签名由 PyJWT 校验；exp / iat / nbf 由本模块基于注入时钟判断
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
}


class TokenCodec:
    """签名令牌编解码器（无状态、无 I/O）"""

    def __init__(self, secret: str, clock: Clock | None = None, access_token_ttl: int = 3600):
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret
        self._clock = clock or Clock()
        self.access_token_ttl = access_token_ttl

    def sign(self, claims: dict) -> str:
        """对声明集签名，返回 header.payload.signature"""
        return jwt.encode(claims, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> dict:
        """校验签名与有效期并返回声明集"""
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenError("Invalid token format", "malformed_token")

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            logger.warning("令牌头部无法解析: %s", str(e))
            raise TokenError("Invalid token format", "malformed_token")

        if header.get("alg") != ALGORITHM:
            logger.warning("令牌声明了不支持的算法: %s", header.get("alg"))
            raise TokenError("Invalid token signature", "invalid_signature")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options=_DECODE_OPTIONS,
            )
        except jwt.InvalidSignatureError:
            logger.warning("令牌签名无效")
            raise TokenError("Invalid token signature", "invalid_signature")
        except jwt.InvalidAlgorithmError:
            raise TokenError("Invalid token signature", "invalid_signature")
        except jwt.InvalidTokenError as e:
            logger.warning("令牌无法解码: %s", str(e))
            raise TokenError("Invalid token format", "malformed_token")

        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise TokenError("Invalid token format", "malformed_token")
        # 到达 exp 的那一秒即视为过期（RFC 7519 4.1.4：当前时间等于或晚于 exp 时不得接受）
        if self._clock.now() >= exp:
            raise TokenError("Token expired", "token_expired")

        return claims

    def issue_access_token(self, customer_id: str, email: str, scopes: list[str]) -> str:
        """签发访问令牌：{sub, email, scopes, type, iat, exp}"""
        issued_at = self._clock.now()
        claims = {
            "sub": customer_id,
            "email": email,
            "scopes": list(scopes),
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": issued_at + self.access_token_ttl,
        }
        return self.sign(claims)
