"""
授权码与刷新令牌的持久化访问层。

一次性语义依赖单条条件 UPDATE 的影响行数：
- 授权码：UPDATE ... SET used = 1 WHERE code = ? AND used = 0
- 刷新令牌轮换：UPDATE ... SET token = new WHERE id = ? AND token = old
影响行数为 1 才算赢得竞争，其余并发调用一律失败。
"""
import json

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from scp_server.db import AuthCode, RefreshToken
from scp_server.exceptions.handlers import StoreError
from scp_server.logging.config import get_structured_logger, mask_secret

logger = get_structured_logger(__name__)


def decode_scopes(raw: str) -> list[str]:
    """解析存储中的 scope JSON 数组"""
    try:
        scopes = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StoreError(f"Malformed scopes column: {e}")
    if not isinstance(scopes, list):
        raise StoreError("Malformed scopes column: not a list")
    return [str(s) for s in scopes]


class TokenRepository:
    """auth_codes / refresh_tokens 表访问"""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # --- 授权码 ---

    def insert_auth_code(
        self,
        code: str,
        customer_email: str,
        customer_id: str,
        client_id: str,
        scopes: list[str],
        code_challenge: str,
        expires_at: int,
        created_at: int,
    ) -> None:
        """写入新授权码（used = 0）"""
        row = AuthCode(
            code=code,
            customer_email=customer_email,
            customer_id=customer_id,
            client_id=client_id,
            scopes=json.dumps(scopes),
            code_challenge=code_challenge,
            expires_at=expires_at,
            used=False,
            created_at=created_at,
        )
        try:
            with self._session_factory.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error("写入授权码失败 code=%s err=%s", mask_secret(code), str(e))
            raise StoreError(f"Failed to store authorization code: {e}")

    def fetch_unused_code(self, code: str) -> AuthCode | None:
        """读取未使用的授权码；已使用或不存在均返回 None"""
        try:
            with self._session_factory() as session:
                return session.scalars(
                    select(AuthCode).where(AuthCode.code == code, AuthCode.used.is_(False))
                ).first()
        except SQLAlchemyError as e:
            logger.error("查询授权码失败 code=%s err=%s", mask_secret(code), str(e))
            raise StoreError(f"Failed to query authorization code: {e}")

    def mark_code_used(self, code: str) -> bool:
        """条件翻转 used；返回 True 表示本次调用赢得兑换权"""
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(AuthCode)
                    .where(AuthCode.code == code, AuthCode.used.is_(False))
                    .values(used=True)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error("标记授权码失败 code=%s err=%s", mask_secret(code), str(e))
            raise StoreError(f"Failed to mark authorization code used: {e}")

    # --- 刷新令牌 ---

    def insert_refresh_token(
        self,
        token: str,
        customer_email: str,
        customer_id: str,
        client_id: str,
        scopes: list[str],
        expires_at: int,
        created_at: int,
    ) -> None:
        """写入新的刷新令牌行"""
        row = RefreshToken(
            token=token,
            customer_email=customer_email,
            customer_id=customer_id,
            client_id=client_id,
            scopes=json.dumps(scopes),
            expires_at=expires_at,
            created_at=created_at,
        )
        try:
            with self._session_factory.begin() as session:
                session.add(row)
        except SQLAlchemyError as e:
            logger.error("写入刷新令牌失败 customer_id=%s err=%s", customer_id, str(e))
            raise StoreError(f"Failed to store refresh token: {e}")

    def get_refresh_token(self, token: str) -> RefreshToken | None:
        """按令牌值精确查询"""
        try:
            with self._session_factory() as session:
                return session.scalars(
                    select(RefreshToken).where(RefreshToken.token == token)
                ).first()
        except SQLAlchemyError as e:
            logger.error("查询刷新令牌失败 err=%s", str(e))
            raise StoreError(f"Failed to query refresh token: {e}")

    def rotate_refresh_token(self, row_id: int, old_token: str, new_token: str, now: int) -> bool:
        """就地轮换：旧值失效与新值生效在同一条语句内完成"""
        try:
            with self._session_factory.begin() as session:
                result = session.execute(
                    update(RefreshToken)
                    .where(RefreshToken.id == row_id, RefreshToken.token == old_token)
                    .values(token=new_token, last_used=now)
                )
                return result.rowcount == 1
        except SQLAlchemyError as e:
            logger.error("轮换刷新令牌失败 row_id=%s err=%s", row_id, str(e))
            raise StoreError(f"Failed to rotate refresh token: {e}")

    def delete_refresh_token(self, token: str) -> int:
        """删除匹配的刷新令牌，返回删除行数"""
        try:
            with self._session_factory.begin() as session:
                result = session.execute(delete(RefreshToken).where(RefreshToken.token == token))
                return result.rowcount
        except SQLAlchemyError as e:
            logger.error("删除刷新令牌失败 err=%s", str(e))
            raise StoreError(f"Failed to delete refresh token: {e}")

    # --- 清理 ---

    def purge_expired(self, now: int) -> dict:
        """删除过期或已使用的授权码、过期的刷新令牌"""
        try:
            with self._session_factory.begin() as session:
                codes = session.execute(
                    delete(AuthCode).where(or_(AuthCode.expires_at < now, AuthCode.used.is_(True)))
                ).rowcount
                tokens = session.execute(
                    delete(RefreshToken).where(RefreshToken.expires_at < now)
                ).rowcount
        except SQLAlchemyError as e:
            logger.error("清理过期令牌失败 err=%s", str(e))
            raise StoreError(f"Failed to purge expired tokens: {e}")

        logger.info("过期令牌清理完成 auth_codes=%d refresh_tokens=%d", codes, tokens)
        return {"auth_codes": codes, "refresh_tokens": tokens}
