"""
Magic link 邮件发送（Resend HTTP API）。

未配置 API 密钥时只把链接写入日志，便于本地开发直接点击授权。
发送失败不重试，由调用方决定如何处理。
"""
from abc import ABC, abstractmethod
from html import escape

import httpx

from scp_server.exceptions.handlers import ExternalServiceError
from scp_server.logging.config import get_structured_logger, mask_secret

logger = get_structured_logger(__name__)

LINK_VALIDITY_TEXT = "This link will expire in 10 minutes."
# 对外固定的失败描述，传输层细节只写日志
EMAIL_FAILURE_MESSAGE = "Failed to send email"


class MagicLinkNotifier(ABC):
    """magic link 投递接口"""

    @abstractmethod
    def send(self, email: str, merchant_name: str, link: str) -> None:
        """发送授权链接；失败时抛出 ExternalServiceError"""


def render_email(merchant_name: str, link: str) -> tuple[str, str, str]:
    """生成 (subject, html, text)"""
    subject = f"Authorize {merchant_name} Access"
    safe_merchant = escape(merchant_name)
    safe_link = escape(link, quote=True)

    html = f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1 style="font-size: 24px;">Shopper Context Authorization</h1>
  <p>A request has been made to access your {safe_merchant} shopper data.</p>
  <p>Click the button below to authorize this request:</p>
  <p style="text-align: center; margin: 30px 0;">
    <a href="{safe_link}" style="background: #667eea; color: white; padding: 14px 32px; text-decoration: none; border-radius: 6px;">Authorize Access</a>
  </p>
  <p>Or copy and paste this link into your browser:</p>
  <p style="word-break: break-all; font-family: monospace; font-size: 12px;">{safe_link}</p>
  <p style="font-size: 12px; color: #9ca3af;">{LINK_VALIDITY_TEXT}</p>
  <p style="font-size: 12px; color: #9ca3af;">If you didn't request this authorization, you can safely ignore this email.</p>
</body>
</html>"""

    text = (
        "Shopper Context Authorization\n\n"
        f"A request has been made to access your {merchant_name} shopper data.\n\n"
        f"Click this link to authorize: {link}\n\n"
        f"{LINK_VALIDITY_TEXT}\n\n"
        "If you didn't request this authorization, you can safely ignore this email."
    )
    return subject, html, text


class ResendMagicLinkNotifier(MagicLinkNotifier):
    """通过 Resend 发送 magic link 邮件"""

    def __init__(
        self,
        api_key: str | None,
        email_from: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key
        self.email_from = email_from
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport

    def send(self, email: str, merchant_name: str, link: str) -> None:
        logger.info("发送 magic link 邮件 to=%s merchant=%s", mask_secret(email, keep=2), merchant_name)

        if not self.api_key:
            # 本地开发：直接输出链接
            logger.warning("未配置 RESEND_API_KEY，magic link 仅记录到日志: %s", link)
            return

        subject, html, text = render_email(merchant_name, link)
        payload = {
            "from": self.email_from,
            "to": email,
            "subject": subject,
            "html": html,
            "text": text,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            timeout = httpx.Timeout(self.timeout, connect=5.0)
            with httpx.Client(timeout=timeout, transport=self._transport) as client:
                resp = client.post(self.api_url, json=payload, headers=headers)
                resp.raise_for_status()
                result = resp.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "邮件服务返回错误 status=%s body=%s",
                e.response.status_code, e.response.text[:300]
            )
            raise ExternalServiceError(EMAIL_FAILURE_MESSAGE, "email_delivery_failed")
        except (httpx.HTTPError, ValueError) as e:
            logger.error("邮件发送异常: %s", str(e))
            raise ExternalServiceError(EMAIL_FAILURE_MESSAGE, "email_delivery_failed")

        logger.info("magic link 邮件已发送 message_id=%s", result.get("id") if isinstance(result, dict) else None)
