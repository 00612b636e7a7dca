"""
服务能力发现路由
"""
from fastapi import APIRouter

from scp_server.config import settings
from scp_server.models.oauth import SUPPORTED_SCOPES
from scp_server.services.pkce import SUPPORTED_METHODS

router = APIRouter(prefix="/v1", tags=["能力发现"])


@router.get("/capabilities")
def capabilities():
    """授权服务器元数据"""
    base = settings.public_url
    return {
        "version": "1.0",
        "protocol_version": "scp1",
        "scopes_supported": SUPPORTED_SCOPES,
        "authorization_endpoint": f"{base}/v1/authorize/init",
        "token_endpoint": f"{base}/v1/token",
        "revocation_endpoint": f"{base}/v1/revoke",
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": list(SUPPORTED_METHODS),
        "token_endpoint_auth_methods_supported": ["none"],
        "magic_link_supported": True,
        "webhook_support": False,
    }
