"""
健康检查路由
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from scp_server.config import settings
from scp_server.dependencies import get_engine, get_transient_store
from scp_server.logging.config import get_structured_logger
from scp_server.repositories.transient import TransientStore

logger = get_structured_logger(__name__)

router = APIRouter(tags=["健康检查"])


@router.get("/health")
def health(
    store: TransientStore = Depends(get_transient_store),
    engine: Engine = Depends(get_engine),
):
    """健康检查端点：临时存储与数据库连通性"""
    checks = {"transient_store": "ok" if store.ping() else "unavailable"}

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        logger.warning("数据库健康检查失败: %s", str(e))
        checks["database"] = "unavailable"

    healthy = all(v == "ok" for v in checks.values())
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ok" if healthy else "degraded",
            "service": settings.app_name,
            "version": settings.app_version,
            "checks": checks,
        },
    )
