"""PKCE（RFC 7636）S256 校验"""
import base64
import hashlib
import hmac

SUPPORTED_METHODS = ("S256",)


def compute_s256_challenge(code_verifier: str) -> str:
    """S256: BASE64URL(SHA256(code_verifier))，去掉填充"""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_verifier: str | None, code_challenge: str | None) -> bool:
    """比较 verifier 变换结果与注册时的 challenge（常量时间比较）"""
    if not code_verifier or not code_challenge:
        return False
    try:
        computed = compute_s256_challenge(code_verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(computed.encode("ascii"), code_challenge.encode("utf-8"))
