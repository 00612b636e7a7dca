"""
持久存储：SQLAlchemy 引擎、会话与 ORM 表定义。

只保存 OAuth 状态（授权码、刷新令牌）和意图活动日志，客户数据不落库。
时间字段统一为毫秒时间戳（INTEGER）。
"""
import logging
from typing import Optional

from sqlalchemy import Boolean, Integer, BigInteger, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("scp-server")


# -------------------------------
# ORM 模型
# -------------------------------
class Base(DeclarativeBase):
    """SQLAlchemy ORM 基类。"""


class AuthCode(Base):
    """授权码（短期、一次性）。"""

    __tablename__ = "auth_codes"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # JSON 数组
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    code_challenge: Mapped[str] = mapped_column(String(128), nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    # 只允许 0 → 1 单向翻转
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="0", index=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)


class RefreshToken(Base):
    """刷新令牌；轮换时原行就地更新 token 值。"""

    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    customer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    client_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # JSON 数组
    scopes: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_used: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class IntentActivity(Base):
    """意图活动日志（只追加，读取时折叠成意图对象）。"""

    __tablename__ = "intent_activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    customer_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    intent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    # scp_intent_created / scp_intent_updated
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    # JSON 对象
    data: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[str] = mapped_column(String(40), nullable=False)


# -------------------------------
# 引擎与会话
# -------------------------------
def build_engine(database_url: str) -> Engine:
    """创建引擎；SQLite 内存库使用单连接池以便跨线程共享"""
    kwargs = {"future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    """会话工厂"""
    return sessionmaker(engine, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """按 ORM 定义建表（含索引）"""
    Base.metadata.create_all(engine)
    logger.info("数据库表已就绪: %s", ", ".join(Base.metadata.tables))
