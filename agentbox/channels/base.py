"""
渠道适配器基类模块 - 定义所有消息渠道的统一契约。

本模块提供了 ChannelAdapter 抽象基类，所有具体渠道（Slack、Teams、Webhook）
都必须继承此基类。这是"策略模式"（Strategy Pattern）的典型应用：
ChannelRouter 只依赖这个契约，从不依赖具体适配器的内部实现。

【核心方法】
- initialize(config, channel_id): 启动时用存储层中的渠道配置（token、密钥、URL）初始化
- send_message(target_id, message): 把出站消息发到平台上的某个目标（频道、会话、回调 URL）
- handle_inbound(request): 把平台的入站 webhook 请求解析为 InboundMessage，
  返回 None 表示"忽略该事件"（机器人自己的回声、握手验证请求、空消息）
- verify_webhook(request): 校验入站请求的真实性（签名等），默认放行
- shutdown(): 优雅关闭

【Java 开发者类比】
- ChannelAdapter 相当于 Java 的 interface + 默认方法（default method）
- ChannelError 相当于一个受检异常，路由层记录日志后继续向调用方抛出
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from agentbox.channels.events import ChannelMessage, InboundMessage, WebhookRequest


class ChannelError(Exception):
    """渠道投递失败（配置缺失、平台 API 报错、网络错误）。"""


class ChannelAdapter(ABC):
    """
    渠道适配器抽象基类。

    属性:
        name: 适配器标识名（"slack"、"teams"、"webhook"），即渠道类型
    """

    name: str = "base"

    @abstractmethod
    async def initialize(self, config: dict[str, Any], channel_id: str = "") -> None:
        """
        用一份渠道配置初始化适配器。

        同一类型可能有多个渠道实例（多租户），channel_id 是存储层 ChannelConfig.id 的字符串形式。
        """
        pass

    @abstractmethod
    async def send_message(self, target_id: str, message: ChannelMessage) -> None:
        """
        发送出站消息。

        参数:
            target_id: 平台上的目标（Slack 频道 ID、Teams 会话 ID、webhook 回调 URL）
            message: 已按目标渠道格式化过的消息

        异常:
            ChannelError: 投递失败
        """
        pass

    async def handle_inbound(self, request: WebhookRequest) -> InboundMessage | None:
        """解析入站请求；不支持入站的适配器直接忽略。"""
        return None

    def verify_webhook(self, request: WebhookRequest) -> bool:
        return True

    async def shutdown(self) -> None:
        logger.info(f"[{self.name}] Adapter shut down")
