"""
JSON-RPC 路由
"""
import json

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from scp_server.dependencies import get_rpc_dispatcher
from scp_server.exceptions.handlers import RPCError
from scp_server.logging.config import get_structured_logger
from scp_server.services.rpc import RPCDispatcher, error_envelope

logger = get_structured_logger(__name__)

router = APIRouter(prefix="/v1", tags=["RPC"])


def extract_bearer_token(authorization: str | None) -> str | None:
    """从 Authorization 头提取 Bearer 令牌"""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@router.post("/rpc")
async def rpc(
    request: Request,
    dispatcher: RPCDispatcher = Depends(get_rpc_dispatcher),
):
    """SCP 数据访问（JSON-RPC 2.0）"""
    access_token = extract_bearer_token(request.headers.get("authorization"))
    if access_token is None:
        return JSONResponse(
            status_code=401,
            content=error_envelope(None, RPCError.UNAUTHORIZED, "Missing or invalid authorization header"),
        )

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("RPC 请求体无法解析")
        return JSONResponse(
            status_code=400,
            content=error_envelope(None, RPCError.PARSE_ERROR, "Parse error"),
        )

    return await run_in_threadpool(dispatcher.handle, access_token, payload)
