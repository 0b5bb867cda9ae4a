"""
Microsoft Teams 渠道适配器 - 直接调用 Bot Framework REST API。

- 访问令牌：OAuth2 client credentials，缓存到过期前 5 分钟
- 发送：POST {service_url}/v3/conversations/{会话ID}/activities
- 入站：只处理 type=message 的 activity，去掉 <at>机器人</at> 提及标记

service_url 由 Bot Framework 在入站 activity 中告知，首次收到消息时记录下来；
也可以直接写在渠道配置里。

渠道配置（来自存储层）:
    app_id / app_password: Azure AD 应用凭据
    default_conversation: 主动推送的默认会话
    service_url: Bot Framework 服务地址（可选）
"""

import re
import time
from typing import Any, Callable
from urllib.parse import quote

import httpx
from loguru import logger

from agentbox.channels.base import ChannelAdapter, ChannelError
from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest

TOKEN_URL = "https://login.microsoftonline.com/botframework.com/oauth2/v2.0/token"
BOT_FRAMEWORK_SCOPE = "https://api.botframework.com/.default"
TOKEN_REFRESH_MARGIN = 300  # 秒

_MENTION_RE = re.compile(r"<at>.*?</at>", re.IGNORECASE)


class TeamsAdapter(ChannelAdapter):
    """Teams 适配器。transport 和 clock 可注入，便于测试。"""

    name = "teams"

    def __init__(
        self,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout = timeout
        self._transport = transport
        self._clock = clock
        self.app_id = ""
        self.app_password = ""
        self.service_url = ""
        self._access_token = ""
        self._token_expires_at = 0.0

    async def initialize(self, config: dict[str, Any], channel_id: str = "") -> None:
        self.app_id = config.get("app_id") or ""
        self.app_password = config.get("app_password") or ""
        self.service_url = (config.get("service_url") or "").rstrip("/")
        if not self.app_id or not self.app_password:
            logger.warning("[teams] Missing app_id or app_password in config, sending will fail")
        logger.info("[teams] Adapter initialized")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def get_access_token(self) -> str:
        """返回有效的访问令牌，临近过期时重新获取。"""
        if self._access_token and self._clock() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
            return self._access_token

        logger.debug("[teams] Fetching new access token")
        try:
            async with self._client() as client:
                response = await client.post(
                    TOKEN_URL,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.app_id,
                        "client_secret": self.app_password,
                        "scope": BOT_FRAMEWORK_SCOPE,
                    },
                )
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"[teams] Token refresh failed: {e}")
            raise ChannelError("Failed to get Teams access token") from e

        token = payload.get("access_token")
        if not token:
            raise ChannelError("Failed to get Teams access token")
        self._access_token = token
        self._token_expires_at = self._clock() + float(payload.get("expires_in") or 3600)
        return self._access_token

    async def send_message(self, target_id: str, message: ChannelMessage) -> None:
        if not self.app_id or not self.app_password:
            raise ChannelError("Teams app_id/app_password not configured")
        if not self.service_url:
            raise ChannelError("Teams service_url not set (received on first inbound message)")

        token = await self.get_access_token()
        url = f"{self.service_url}/v3/conversations/{quote(target_id, safe='')}/activities"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    json={"type": "message", "text": message.text, "textFormat": "markdown"},
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ChannelError(f"Teams send to {target_id} failed: {e}") from e
        logger.info(f"[teams] Message sent to conversation {target_id}")

    async def handle_inbound(self, request: WebhookRequest) -> InboundMessage | None:
        request.response = {}
        activity = request.json()
        if not isinstance(activity, dict) or activity.get("type") != "message":
            return None

        text = _MENTION_RE.sub("", activity.get("text") or "").strip()
        if not text:
            return None

        service_url = activity.get("serviceUrl") or ""
        if service_url and not self.service_url:
            self.service_url = service_url.rstrip("/")
            logger.info(f"[teams] Service URL captured: {self.service_url}")

        conversation_id = (activity.get("conversation") or {}).get("id") or ""
        sender = activity.get("from") or {}
        tenant = ((activity.get("channelData") or {}).get("tenant") or {}).get("id")
        return InboundMessage(
            text=text,
            sender_id=sender.get("id") or "unknown",
            sender_name=sender.get("name") or None,
            channel_type=self.name,
            thread_id=conversation_id or None,
            metadata={
                "activityId": activity.get("id"),
                "conversationId": conversation_id,
                "serviceUrl": service_url,
                "replyChannelId": conversation_id,
                "tenantId": tenant,
            },
        )

    async def shutdown(self) -> None:
        self._access_token = ""
        self._token_expires_at = 0.0
        await super().shutdown()
