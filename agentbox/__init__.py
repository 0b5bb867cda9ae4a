"""
agentbox - 多租户对话式 Agent 运行时

模块概述：
    本文件是 agentbox 包的入口文件（__init__.py），定义了包的元信息。
    agentbox 把"一条入站消息 → 一条回复"的完整流水线封装成可复用的运行时，
    每个 Agent 拥有自己的人设/指令、启用的能力（外部工具集成）以及多个接入渠道。

    整个框架的核心功能包括：
    - 会话管理：按 (Agent, 渠道类型, 渠道 ID) 维持会话亲和性，并惰性生成会话摘要
    - 上下文组装：系统指令、长期记忆召回、近期历史、跨会话摘要、渠道提示
    - 工具调用循环：基于 LiteLLM 的多轮 generate → tool calls → execute 循环
    - 多渠道路由：Slack、Teams、通用 Webhook 的入站/出站消息路由
    - 后台任务与定时任务：隔离会话中运行同一条对话流水线
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "📦"
