"""
工具函数模块 - 提供 agentbox 项目全局通用的辅助函数。

本模块包含：
- ensure_dir：确保目录存在
- safe_filename：把任意字符串变成安全的文件名
- utc_now / format_date：默认时钟与日期格式化
"""

from agentbox.utils.helpers import ensure_dir, format_date, safe_filename, utc_now

__all__ = ["ensure_dir", "format_date", "safe_filename", "utc_now"]
