"""
消息渠道模块 - 把 Agent 接入外部平台（Slack、Teams、通用 Webhook）。

每个平台一个 ChannelAdapter 实现，由 ChannelRouter 统一注册、初始化和路由。

消息流向：
  平台 webhook → ChannelRouter.handle_inbound → process_inbound → AgentRuntime.handle_turn
  → ChannelRouter.send_message → 适配器 → 平台

【Java 开发者类比】
- ChannelAdapter 相当于 Java 接口，各平台适配器是它的不同实现
- ChannelRouter 相当于 Spring 容器里的一个路由 Bean，持有所有适配器
"""

from agentbox.channels.base import ChannelAdapter, ChannelError
from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest
from agentbox.channels.formatter import format_for_channel
from agentbox.channels.router import ChannelRouter

__all__ = [
    "ChannelAdapter",
    "ChannelError",
    "ChannelMessage",
    "ChannelRouter",
    "InboundMessage",
    "WebhookRequest",
    "format_for_channel",
]
