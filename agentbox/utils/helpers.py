"""
工具函数集合 - agentbox 项目全局通用的辅助函数。

本模块提供路径管理、字符串处理、时间处理等基础工具函数，
被项目中的多个模块引用。

函数分类：
- 路径管理：ensure_dir
- 字符串工具：safe_filename
- 时间工具：utc_now, format_date
"""

from datetime import datetime, timezone
from pathlib import Path


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def utc_now() -> datetime:
    """获取当前 UTC 时间（带时区信息）。会话管理器和存储层的默认时钟。"""
    return datetime.now(timezone.utc)


def format_date(value: datetime | None, fallback: str = "unknown date") -> str:
    """把时间格式化为 YYYY-MM-DD，空值时返回 fallback。"""
    if value is None:
        return fallback
    return value.strftime("%Y-%m-%d")


def safe_filename(name: str) -> str:
    """
    将字符串转换为安全的文件名（替换 < > : " / \\ | ? * 为下划线）。
    """
    unsafe = '<>:"/\\|?*'
    for char in unsafe:
        name = name.replace(char, "_")
    return name.strip()
