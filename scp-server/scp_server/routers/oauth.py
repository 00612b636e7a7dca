"""
OAuth 授权路由：magic link 授权、令牌兑换与撤销
"""
import json
from html import escape

from fastapi import APIRouter, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse, JSONResponse

from scp_server.dependencies import get_authorization_service
from scp_server.exceptions.handlers import InvalidRequestError, OAuthError, UnsupportedGrantTypeError
from scp_server.logging.config import get_structured_logger
from scp_server.models.oauth import InitRequest, InitResponse, PollResponse
from scp_server.services.authorization import AuthorizationService

logger = get_structured_logger(__name__)

router = APIRouter(prefix="/v1", tags=["授权"])

NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
      body {{ font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; text-align: center; }}
      h1 {{ color: {color}; }}
    </style>
  </head>
  <body>
    <h1>{heading}</h1>
    <p>{message}</p>
  </body>
</html>"""


def render_page(success: bool, message: str) -> str:
    """确认页 HTML（消息内容转义）"""
    if success:
        return _PAGE_TEMPLATE.format(
            title="Authorization Successful",
            color="#4CAF50",
            heading="&#10003; Authorization Successful",
            message=escape(message),
        )
    return _PAGE_TEMPLATE.format(
        title="Authorization Failed",
        color="#f44336",
        heading="&#10007; Authorization Failed",
        message=escape(message),
    )


async def read_params(request: Request) -> dict:
    """读取表单或 JSON 请求体，统一为 {str: str}"""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidRequestError("Request body is not valid JSON")
        if not isinstance(body, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        return {k: v for k, v in body.items() if isinstance(v, str)}

    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


@router.post("/authorize/init", response_model=InitResponse)
def authorize_init(
    body: InitRequest,
    service: AuthorizationService = Depends(get_authorization_service),
):
    """发起 magic link 授权"""
    return service.init(body)


@router.get("/authorize/poll", response_model=PollResponse, response_model_exclude_none=True)
def authorize_poll(
    auth_request_id: str | None = Query(None),
    client_id: str | None = Query(None),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """轮询授权状态"""
    return service.poll(auth_request_id, client_id)


@router.get("/authorize/confirm", response_class=HTMLResponse)
def authorize_confirm(
    token: str | None = Query(None),
    service: AuthorizationService = Depends(get_authorization_service),
):
    """magic link 落地页"""
    try:
        service.confirm(token)
    except OAuthError as e:
        return HTMLResponse(render_page(False, e.message), status_code=e.status_code)

    return HTMLResponse(
        render_page(True, "You can now close this window and return to your AI assistant."),
        headers=NO_STORE,
    )


@router.post("/token")
async def token(
    request: Request,
    service: AuthorizationService = Depends(get_authorization_service),
):
    """令牌端点：authorization_code / refresh_token"""
    params = await read_params(request)
    grant_type = params.get("grant_type")

    if not grant_type:
        raise InvalidRequestError("grant_type is required")

    if grant_type == "authorization_code":
        response = await run_in_threadpool(
            service.exchange,
            params.get("code"),
            params.get("code_verifier"),
            params.get("client_id"),
        )
        return JSONResponse(response.model_dump(), headers=NO_STORE)

    if grant_type == "refresh_token":
        response = await run_in_threadpool(
            service.refresh,
            params.get("refresh_token"),
            params.get("client_id"),
        )
        return JSONResponse(response.model_dump(exclude_none=True), headers=NO_STORE)

    logger.warning("不支持的 grant_type: %s", grant_type)
    raise UnsupportedGrantTypeError(f"Grant type '{grant_type}' not supported")


@router.post("/revoke")
async def revoke(
    request: Request,
    service: AuthorizationService = Depends(get_authorization_service),
):
    """撤销刷新令牌"""
    params = await read_params(request)
    response = await run_in_threadpool(service.revoke, params.get("token"))
    return response.model_dump()
