"""
渠道路由器模块 - 多渠道消息路由的中心。

本模块是渠道层的"大管家"，负责：
1. 注册适配器，并用存储层中的渠道配置初始化它们
2. 出站：按目标渠道格式化文本，调用适配器发送；失败时记录日志后继续抛出
3. 入站：校验签名 -> 适配器解析 -> 定位 Agent -> 会话亲和 -> 跑一轮对话 -> 回复到原渠道
4. 广播：把一条消息推送到某个 Agent 的所有启用渠道，单个渠道失败不影响其他渠道

【回复目标优先级】
  入站事件 metadata 中的 replyChannelId -> 入站事件的 thread_id -> 渠道配置的默认目标

【Java 开发者类比】
- ChannelRouter 相当于 Spring Integration 的 MessageRouter + 一组 OutboundGateway
- 路由器是显式构造的实例，由进程生命周期的所有者（网关命令）持有并传递，不是模块级单例
"""

from typing import TYPE_CHECKING, Any

from loguru import logger

from agentbox.channels.base import ChannelAdapter
from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest
from agentbox.channels.formatter import format_for_channel
from agentbox.storage.base import Storage
from agentbox.storage.models import ChannelConfig

if TYPE_CHECKING:
    from agentbox.agent.runtime import AgentRuntime, TurnResult

# 渠道类型 -> 配置中存放默认目标的键（按优先级）
DEFAULT_TARGET_KEYS: dict[str, tuple[str, ...]] = {
    "slack": ("default_channel", "channel_id"),
    "teams": ("default_conversation", "conversation_id"),
    "webhook": ("callback_url",),
}


def default_target_id(channel: ChannelConfig) -> str | None:
    """渠道配置中的默认发送目标；没有时返回 None。"""
    config = channel.config or {}
    for key in DEFAULT_TARGET_KEYS.get(channel.channel_type, ()):
        if config.get(key):
            return str(config[key])
    return None


def reply_target(inbound: InboundMessage, channel: ChannelConfig | None) -> str | None:
    """按优先级解析入站消息的回复目标。"""
    explicit = (inbound.metadata or {}).get("replyChannelId")
    if explicit:
        return str(explicit)
    if inbound.thread_id:
        return inbound.thread_id
    if channel is not None:
        return default_target_id(channel)
    return None


class ChannelRouter:
    """
    渠道路由器。

    属性:
        storage: 读取渠道配置
        runtime: 对话运行时（处理入站消息时使用，可以后注入）
        adapters: 已注册的适配器 {渠道类型: 适配器}
    """

    def __init__(self, storage: Storage, runtime: "AgentRuntime | None" = None):
        self.storage = storage
        self.runtime = runtime
        self.adapters: dict[str, ChannelAdapter] = {}
        self._initialized: set[str] = set()

    # ========== 适配器注册与初始化 ==========

    def register_adapter(self, adapter: ChannelAdapter) -> None:
        self.adapters[adapter.name] = adapter
        logger.info(f"Channel adapter registered: {adapter.name}")

    def adapter(self, channel_type: str) -> ChannelAdapter | None:
        return self.adapters.get(channel_type)

    @property
    def initialized_channels(self) -> set[str]:
        return set(self._initialized)

    async def initialize_all(self) -> int:
        """初始化存储层中所有启用的渠道配置，返回成功初始化的数量。"""
        try:
            channels = await self.storage.list_channels(enabled_only=True)
        except Exception as e:
            logger.error(f"Failed to load channel configs: {e}")
            return 0

        initialized = 0
        for channel in channels:
            try:
                if await self.initialize_channel(channel):
                    initialized += 1
            except Exception as e:
                logger.error(f"Failed to initialize channel #{channel.id} ({channel.channel_type}): {e}")
        logger.info(f"Channels initialized: {initialized}/{len(channels)}")
        return initialized

    async def initialize_channel(self, channel: ChannelConfig) -> bool:
        adapter = self.adapters.get(channel.channel_type)
        if adapter is None:
            logger.warning(f"No adapter registered for type '{channel.channel_type}' (channel #{channel.id})")
            return False

        key = f"{channel.channel_type}:{channel.id}"
        if key in self._initialized:
            return True

        await adapter.initialize(channel.config or {}, channel_id=str(channel.id))
        self._initialized.add(key)
        logger.info(
            f"Channel initialized: {channel.channel_type} '{channel.name or channel.id}' agent={channel.agent_id}"
        )
        return True

    # ========== 出站：Agent -> 渠道 ==========

    async def send_message(self, channel_type: str, target_id: str, message: ChannelMessage) -> None:
        """
        通过指定渠道发送消息（发送前按渠道格式化）。

        异常:
            适配器抛出的任何异常：记录日志后原样抛出
        """
        adapter = self.adapters.get(channel_type)
        if adapter is None:
            logger.error(f"No adapter for channel type '{channel_type}', cannot send")
            return

        formatted = ChannelMessage(
            text=format_for_channel(message.text, channel_type),
            agent_id=message.agent_id,
            conversation_id=message.conversation_id,
            metadata=dict(message.metadata or {}),
            channel_id=message.channel_id,
        )
        try:
            await adapter.send_message(target_id, formatted)
        except Exception as e:
            logger.error(f"Channel send failed: {channel_type} -> {target_id}: {e}")
            raise
        logger.info(
            f"Channel message sent: {channel_type} -> {target_id} "
            f"agent={message.agent_id} len={len(message.text)}"
        )

    async def send_to_all(self, agent_id: str, text: str) -> int:
        """广播到 Agent 的所有启用渠道，返回成功投递的数量。"""
        try:
            channels = await self.storage.list_channels(agent_id, enabled_only=True)
        except Exception as e:
            logger.error(f"send_to_all: failed to load channels for agent {agent_id}: {e}")
            return 0
        if not channels:
            logger.info(f"No enabled channels for agent {agent_id}")
            return 0

        delivered = 0
        for channel in channels:
            target = default_target_id(channel)
            if not target:
                logger.warning(f"Channel #{channel.id} ({channel.channel_type}) has no default target, skipped")
                continue
            try:
                message = ChannelMessage(text=text, agent_id=agent_id, channel_id=str(channel.id))
                await self.send_message(channel.channel_type, target, message)
                delivered += 1
            except Exception as e:
                logger.error(f"Broadcast to channel #{channel.id} ({channel.channel_type}) failed: {e}")
        return delivered

    # ========== 入站：渠道 -> Agent ==========

    async def handle_inbound(
        self,
        channel_type: str,
        request: WebhookRequest,
        channel_id: str | None = None,
    ) -> InboundMessage | None:
        """
        校验并解析入站请求。返回 None 表示忽略该事件（不是错误）。

        参数:
            channel_id: 请求所属的渠道实例 ID（由 HTTP 层从 URL 中取出）
        """
        adapter = self.adapters.get(channel_type)
        if adapter is None:
            logger.warning(f"No inbound handler for channel type '{channel_type}'")
            return None

        if channel_id:
            request.channel_id = str(channel_id)
        try:
            if not adapter.verify_webhook(request):
                logger.warning(f"Inbound {channel_type} request failed verification")
                return None
            inbound = await adapter.handle_inbound(request)
        except Exception as e:
            logger.error(f"Inbound handling error ({channel_type}): {e}")
            return None

        if inbound is not None:
            if channel_id and not inbound.channel_id:
                inbound.channel_id = str(channel_id)
            logger.info(f"Inbound message received: {channel_type} sender={inbound.sender_id} len={len(inbound.text)}")
        return inbound

    async def process_inbound(self, inbound: InboundMessage) -> "TurnResult | None":
        """
        处理一条入站消息：定位 Agent -> 会话 -> 一轮对话 -> 回复。

        任何异常都只记录日志，不会向上抛出；无法确定 Agent 或回复目标时丢弃该事件。
        """
        if self.runtime is None:
            logger.error("ChannelRouter has no runtime, inbound dropped")
            return None

        try:
            channel = await self._channel_for(inbound)
            agent_id = channel.agent_id if channel else (inbound.metadata or {}).get("agentId")
            if not agent_id:
                logger.warning(f"Cannot find agent for channel {inbound.channel_type}:{inbound.channel_id or '-'}")
                return None

            target = reply_target(inbound, channel)
            if not target:
                logger.warning(f"No reply target for inbound on {inbound.channel_type}:{inbound.channel_id or '-'}")
                return None

            conv = await self.runtime.resolve_or_create_session(
                agent_id,
                channel_type=inbound.channel_type,
                channel_id=self._session_channel_id(inbound),
                external_user_id=f"{inbound.channel_type}:{inbound.sender_id}",
            )
            logger.info(f"Processing inbound for agent {agent_id} via {inbound.channel_type}: {inbound.text[:80]!r}")

            result = await self.runtime.handle_turn(agent_id, conv.id, inbound.text)

            metadata: dict[str, Any] = {}
            if (inbound.metadata or {}).get("thread_ts"):
                metadata["thread_ts"] = inbound.metadata["thread_ts"]
            await self.send_message(
                inbound.channel_type,
                target,
                ChannelMessage(
                    text=result.reply,
                    agent_id=agent_id,
                    conversation_id=conv.id,
                    metadata=metadata,
                    channel_id=inbound.channel_id,
                ),
            )
            return result
        except Exception as e:
            logger.error(f"process_inbound error ({inbound.channel_type}): {e}")
            return None

    async def _channel_for(self, inbound: InboundMessage) -> ChannelConfig | None:
        try:
            channel_id = int(inbound.channel_id)
        except (TypeError, ValueError):
            return None
        return await self.storage.get_channel(channel_id)

    @staticmethod
    def _session_channel_id(inbound: InboundMessage) -> str:
        # 同一渠道实例下，每个发送者各自一条会话
        base = inbound.channel_id or "adhoc"
        return f"{base}:{inbound.sender_id}"

    # ========== 关闭 ==========

    async def shutdown(self) -> None:
        for name, adapter in self.adapters.items():
            try:
                await adapter.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down adapter {name}: {e}")
        self._initialized.clear()
        logger.info("Channel router shut down")
