"""
通用 Webhook 渠道适配器。

任何外部系统都可以通过 HTTP 接入：
- 出站：向 callback_url POST 一个 JSON 负载，配置了 secret 时附带 HMAC-SHA256 签名
- 入站：向网关 POST {"text", "senderId", "senderName"?, "threadId"?, "metadata"?}

渠道配置（来自存储层）:
    callback_url: 出站消息投递地址，也是入站消息的默认回复目标
    secret: 共享密钥（出站签名 + 入站校验），可选

签名规则：X-Webhook-Signature = hex(HMAC-SHA256(secret, 原始请求体字节))

同一个适配器服务所有 webhook 渠道实例，配置按渠道 ID 分开保存：
入站用请求所属实例的 secret 校验、用它的 callback_url 作回复目标，出站用消息所属实例的 secret 签名。
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from agentbox.channels.base import ChannelAdapter, ChannelError
from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest

SIGNATURE_HEADER = "X-Webhook-Signature"
ANONYMOUS_SENDER = "webhook-anonymous"


def sign_payload(secret: str, body: bytes) -> str:
    """计算请求体的 HMAC-SHA256 十六进制签名。"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookAdapter(ChannelAdapter):
    """
    通用 Webhook 适配器。

    参数:
        timeout: 出站请求超时（秒）
        transport: 可选的 httpx 传输层（测试时注入 httpx.MockTransport）
    """

    name = "webhook"

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport
        self._configs: dict[str, dict[str, str]] = {}

    async def initialize(self, config: dict[str, Any], channel_id: str = "") -> None:
        callback_url = config.get("callback_url") or ""
        if not callback_url:
            logger.warning(f"[webhook] No callback_url for channel '{channel_id or '-'}', outbound will fail")
        self._configs[channel_id] = {"callback_url": callback_url, "secret": config.get("secret") or ""}
        logger.info(f"[webhook] Adapter initialized for channel '{channel_id or '-'}'")

    def config_for(self, channel_id: str) -> dict[str, str] | None:
        """
        渠道实例的配置。

        未知 ID 只在适配器恰好只有一份配置时回落到它；有多份时返回 None，避免串用其他租户的配置。
        """
        if channel_id in self._configs:
            return self._configs[channel_id]
        if not self._configs:
            return {}
        if len(self._configs) == 1:
            return next(iter(self._configs.values()))
        return None

    async def send_message(self, target_id: str, message: ChannelMessage) -> None:
        config = self.config_for(message.channel_id) or {}
        target_url = target_id or config.get("callback_url")
        if not target_url:
            raise ChannelError("Webhook callback_url not configured")

        body = json.dumps({
            "text": message.text,
            "agentId": message.agent_id,
            "conversationId": message.conversation_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": message.metadata or {},
        }).encode("utf-8")

        headers = {"Content-Type": "application/json"}
        secret = config.get("secret")
        if secret:
            headers[SIGNATURE_HEADER] = sign_payload(secret, body)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(target_url, content=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ChannelError(f"Webhook delivery to {target_url} failed: {e}") from e

        logger.info(f"[webhook] Message sent to {target_url}: len={len(message.text)}")

    async def handle_inbound(self, request: WebhookRequest) -> InboundMessage | None:
        request.response = {"ok": True}
        try:
            body = request.json()
        except ValueError:
            logger.warning("[webhook] Inbound body is not valid JSON")
            return None

        text = body.get("text") if isinstance(body, dict) else None
        if not text or not isinstance(text, str):
            logger.warning("[webhook] Inbound missing text field")
            return None

        sender_id = body.get("senderId") or body.get("sender_id") or ANONYMOUS_SENDER
        sender_name = body.get("senderName") or body.get("sender_name")
        thread_id = body.get("threadId") or body.get("thread_id")

        metadata = dict(body.get("metadata") or {})
        callback_url = (self.config_for(request.channel_id) or {}).get("callback_url")
        if callback_url:
            metadata["replyChannelId"] = callback_url

        return InboundMessage(
            text=text,
            sender_id=str(sender_id),
            sender_name=str(sender_name) if sender_name else None,
            channel_type=self.name,
            thread_id=str(thread_id) if thread_id else None,
            metadata=metadata,
        )

    def verify_webhook(self, request: WebhookRequest) -> bool:
        config = self.config_for(request.channel_id)
        if config is None:
            logger.warning(f"[webhook] Unknown channel '{request.channel_id or '-'}', request rejected")
            return False
        secret = config.get("secret")
        if not secret:
            return True
        signature = request.header(SIGNATURE_HEADER)
        if not signature:
            logger.warning("[webhook] Missing X-Webhook-Signature header")
            return False
        expected = sign_payload(secret, request.body)
        return hmac.compare_digest(expected, signature)

    async def shutdown(self) -> None:
        self._configs.clear()
        await super().shutdown()
