"""
Slack 渠道适配器 - 基于 Events API（HTTP 回调）。

入站事件由 Slack 推送到网关的 HTTP 端点，出站消息通过 Web API 的
chat.postMessage 发送。两者都使用 slack_sdk：
- AsyncWebClient：auth_test 获取机器人自身 ID，chat_postMessage 发送消息
- SignatureVerifier：按 Slack 的 v0 签名规则校验入站请求

【入站过滤】
1. url_verification：配置 Events API 地址时的握手请求，回写 challenge 后忽略
2. 只处理 event_callback 中不带 subtype 的 message 事件（编辑、删除等都有 subtype）
3. 过滤机器人消息（bot_id）和自身消息，防止自我响应循环
4. 过滤空消息

【线程回复】
thread_id = thread_ts 或消息自身的 ts；回复时路由层把 metadata 里的 thread_ts
带回 send_message，消息会落在同一个线程里。

渠道配置（来自存储层）:
    bot_token: xoxb-...
    signing_secret: 入站签名校验密钥（不配置时跳过校验）
    default_channel: 主动推送的默认频道
    bot_user_id: 机器人自身的用户 ID（不配置时通过 auth_test 获取）

【Java 开发者类比】
- AsyncWebClient 类似于 Spring 的 WebClient，封装了 Slack 的 REST API
- SignatureVerifier 类似于一个 HandlerInterceptor，在进入业务逻辑前校验请求
"""

import hmac
import time
from typing import Any, Callable

from loguru import logger
from slack_sdk.errors import SlackApiError
from slack_sdk.signature import SignatureVerifier
from slack_sdk.web.async_client import AsyncWebClient

from agentbox.channels.base import ChannelAdapter, ChannelError
from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest


class SlackAdapter(ChannelAdapter):
    """
    Slack 适配器。

    参数:
        timestamp_tolerance: 入站签名时间戳允许的偏差（秒），超出视为重放
        client: 可选的 AsyncWebClient（测试时注入假客户端）
        clock: 返回当前 Unix 时间的函数
    """

    name = "slack"

    def __init__(
        self,
        timestamp_tolerance: int = 300,
        client: AsyncWebClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.timestamp_tolerance = timestamp_tolerance
        self._client = client
        self._client_injected = client is not None
        self._clock = clock
        self._verifier: SignatureVerifier | None = None
        self.bot_token = ""
        self.bot_user_id = ""

    async def initialize(self, config: dict[str, Any], channel_id: str = "") -> None:
        token = config.get("bot_token") or ""
        if not self._client_injected and (self._client is None or token != self.bot_token):
            # 令牌变化时重建客户端（注入的客户端除外）
            self._client = AsyncWebClient(token=token) if token else None
        self.bot_token = token
        self.bot_user_id = config.get("bot_user_id") or ""
        signing_secret = config.get("signing_secret") or ""
        self._verifier = SignatureVerifier(signing_secret) if signing_secret else None

        if not self.bot_token:
            logger.warning("[slack] No bot_token in config, sending will fail")
        if self._verifier is None:
            logger.warning("[slack] No signing_secret in config, webhook verification disabled")

        if self._client is not None and not self.bot_user_id:
            try:
                auth = await self._client.auth_test()
                self.bot_user_id = auth.get("user_id") or ""
                logger.info(f"[slack] Bot user ID resolved: {self.bot_user_id}")
            except Exception as e:
                logger.warning(f"[slack] Could not resolve bot user ID: {e}")

        logger.info("[slack] Adapter initialized")

    async def send_message(self, target_id: str, message: ChannelMessage) -> None:
        if self._client is None:
            raise ChannelError("Slack bot_token not configured")

        thread_ts = (message.metadata or {}).get("thread_ts")
        try:
            response = await self._client.chat_postMessage(
                channel=target_id,
                text=message.text,
                thread_ts=thread_ts,
            )
        except SlackApiError as e:
            raise ChannelError(f"Slack API error: {e.response.get('error', e)}") from e
        logger.info(f"[slack] Message sent to {target_id}: ts={response.get('ts')}")

    async def handle_inbound(self, request: WebhookRequest) -> InboundMessage | None:
        body = request.json()
        if not isinstance(body, dict):
            return None

        if body.get("type") == "url_verification":
            logger.info("[slack] URL verification challenge received")
            request.response = {"challenge": body.get("challenge")}
            return None

        request.response = {"ok": True}
        event = body.get("event") or {}
        if body.get("type") != "event_callback" or not event:
            return None

        if event.get("type") != "message" or event.get("subtype"):
            return None
        if event.get("bot_id") or (self.bot_user_id and event.get("user") == self.bot_user_id):
            return None

        text = event.get("text") or ""
        if not text.strip():
            return None

        profile = event.get("user_profile") or {}
        thread_ts = event.get("thread_ts") or event.get("ts")
        return InboundMessage(
            text=text,
            sender_id=event.get("user") or "unknown",
            sender_name=profile.get("display_name") or profile.get("real_name") or None,
            channel_type=self.name,
            thread_id=thread_ts,
            metadata={
                "slackChannel": event.get("channel"),
                "ts": event.get("ts"),
                "thread_ts": thread_ts,
                "team": body.get("team_id"),
                "replyChannelId": event.get("channel"),
            },
        )

    def verify_webhook(self, request: WebhookRequest) -> bool:
        if self._verifier is None:
            return True

        timestamp = request.header("X-Slack-Request-Timestamp")
        signature = request.header("X-Slack-Signature")
        if not timestamp or not signature:
            logger.warning("[slack] Missing signature headers")
            return False

        try:
            age = abs(self._clock() - int(timestamp))
        except ValueError:
            return False
        if age > self.timestamp_tolerance:
            logger.warning("[slack] Request timestamp too old (possible replay)")
            return False

        expected = self._verifier.generate_signature(timestamp=timestamp, body=request.body)
        return expected is not None and hmac.compare_digest(expected, signature)

    async def shutdown(self) -> None:
        self._client = None
        await super().shutdown()
