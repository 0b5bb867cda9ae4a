"""
会话管理模块 - 维护渠道身份与会话之间的亲和关系。

【架构定位】
会话管理器位于渠道路由和工具循环之间：
- 渠道路由收到入站消息后，通过 (Agent, 渠道类型, 渠道 ID) 定位会话
- 每条消息落库后调用 record_turn() 更新活跃度
- 会话足够长时惰性生成摘要，供后续会话的上下文引用
"""

from agentbox.session.manager import SessionManager

__all__ = ["SessionManager"]
