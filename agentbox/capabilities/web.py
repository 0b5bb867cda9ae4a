"""
网页能力 (capabilities/web.py)

内置的 "web" 能力，提供两个动作：
  - search: 通过 Brave Search API 搜索网页，返回标题、URL 和摘要
  - fetch: 抓取 URL 并用 readability 提取正文（HTML -> markdown / 纯文本）

技术选型：
    - HTTP 客户端：httpx（异步，类似 Java 的 OkHttp）
    - 正文提取：readability-lxml（Mozilla Readability 的 Python 实现，延迟导入）

安全约束：
    - 只允许 http/https 协议
    - 最多跟随 5 次重定向
    - 搜索 10 秒、抓取 30 秒超时
"""

import html
import json
import os
import re
from typing import Any
from urllib.parse import urlparse

import httpx

from agentbox.capabilities.base import CapabilityContext, CapabilityError, CapabilityProvider

USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_7_2) AppleWebKit/537.36"
MAX_REDIRECTS = 5
BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"


def strip_tags(text: str) -> str:
    """去除 script/style 块和所有 HTML 标签，并解码实体。"""
    text = re.sub(r'<script[\s\S]*?</script>', '', text, flags=re.I)
    text = re.sub(r'<style[\s\S]*?</style>', '', text, flags=re.I)
    text = re.sub(r'<[^>]+>', '', text)
    return html.unescape(text).strip()


def normalize_whitespace(text: str) -> str:
    text = re.sub(r'[ \t]+', ' ', text)
    return re.sub(r'\n{3,}', '\n\n', text).strip()


def html_to_markdown(fragment: str) -> str:
    """把 readability 输出的 HTML 片段转换成简化的 Markdown。"""
    text = re.sub(r'<a\s+[^>]*href=["\']([^"\']+)["\'][^>]*>([\s\S]*?)</a>',
                  lambda m: f'[{strip_tags(m[2])}]({m[1]})', fragment, flags=re.I)
    text = re.sub(r'<h([1-6])[^>]*>([\s\S]*?)</h\1>',
                  lambda m: f'\n{"#" * int(m[1])} {strip_tags(m[2])}\n', text, flags=re.I)
    text = re.sub(r'<li[^>]*>([\s\S]*?)</li>', lambda m: f'\n- {strip_tags(m[1])}', text, flags=re.I)
    text = re.sub(r'</(p|div|section|article)>', '\n\n', text, flags=re.I)
    text = re.sub(r'<(br|hr)\s*/?>', '\n', text, flags=re.I)
    return normalize_whitespace(strip_tags(text))


def validate_url(url: str) -> None:
    """只允许带域名的 http/https URL，否则抛出 CapabilityError。"""
    p = urlparse(url)
    if p.scheme not in ('http', 'https'):
        raise CapabilityError(f"Only http/https allowed, got '{p.scheme or 'none'}'")
    if not p.netloc:
        raise CapabilityError("Missing domain")


class WebCapability(CapabilityProvider):
    """网页搜索与抓取能力。"""

    name = "web"
    description = "Search the web and fetch readable page content."
    actions = {
        "search": {
            "description": "Search the web. Returns titles, URLs, and snippets.",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string"},
                    "count": {"type": "integer", "minimum": 1, "maximum": 10},
                },
                "required": ["query"],
            },
        },
        "fetch": {
            "description": "Fetch a URL and extract readable content (HTML to markdown/text).",
            "parameters": {
                "type": "object",
                "properties": {
                    "url": {"type": "string"},
                    "extractMode": {"type": "string", "enum": ["markdown", "text"]},
                    "maxChars": {"type": "integer", "minimum": 100},
                },
                "required": ["url"],
            },
        },
    }

    def __init__(
        self,
        api_key: str | None = None,
        max_results: int = 5,
        max_chars: int = 50000,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        参数:
            api_key: Brave Search API 密钥，为空时读取 BRAVE_API_KEY 环境变量
            transport: 可选的 httpx 传输层（测试中注入 MockTransport）
        """
        self.api_key = api_key or os.environ.get("BRAVE_API_KEY", "")
        self.max_results = max_results
        self.max_chars = max_chars
        self._transport = transport

    async def execute(self, action: str, params: dict[str, Any], context: CapabilityContext) -> Any:
        if action == "search":
            query = params.get("query")
            if not query:
                raise CapabilityError("Missing required parameter: query")
            return await self.search(query, params.get("count"))
        if action == "fetch":
            url = params.get("url")
            if not url:
                raise CapabilityError("Missing required parameter: url")
            return await self.fetch(url, params.get("extractMode", "markdown"), params.get("maxChars"))
        raise CapabilityError(f"Unknown action: {action}")

    async def search(self, query: str, count: int | None = None) -> str:
        if not self.api_key:
            raise CapabilityError("BRAVE_API_KEY not configured")

        n = min(max(count or self.max_results, 1), 10)
        async with httpx.AsyncClient(transport=self._transport) as client:
            r = await client.get(
                BRAVE_SEARCH_URL,
                params={"q": query, "count": n},
                headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
                timeout=10.0,
            )
            r.raise_for_status()

        results = r.json().get("web", {}).get("results", [])
        if not results:
            return f"No results for: {query}"

        lines = [f"Results for: {query}\n"]
        for i, item in enumerate(results[:n], 1):
            lines.append(f"{i}. {item.get('title', '')}\n   {item.get('url', '')}")
            if desc := item.get("description"):
                lines.append(f"   {desc}")
        return "\n".join(lines)

    async def fetch(self, url: str, extract_mode: str = "markdown", max_chars: int | None = None) -> dict[str, Any]:
        """
        抓取网页。

        根据 Content-Type 选择解析策略：JSON 直接格式化，HTML 走 readability，其他原样返回。
        """
        from readability import Document

        validate_url(url)
        max_chars = max_chars or self.max_chars

        async with httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            timeout=30.0,
            transport=self._transport,
        ) as client:
            r = await client.get(url, headers={"User-Agent": USER_AGENT})
            r.raise_for_status()

        ctype = r.headers.get("content-type", "")
        if "application/json" in ctype:
            text, extractor = json.dumps(r.json(), indent=2), "json"
        elif "text/html" in ctype or r.text[:256].lower().startswith(("<!doctype", "<html")):
            doc = Document(r.text)
            summary = doc.summary()
            content = html_to_markdown(summary) if extract_mode == "markdown" else strip_tags(summary)
            text = f"# {doc.title()}\n\n{content}" if doc.title() else content
            extractor = "readability"
        else:
            text, extractor = r.text, "raw"

        truncated = len(text) > max_chars
        if truncated:
            text = text[:max_chars]

        return {
            "url": url,
            "finalUrl": str(r.url),
            "status": r.status_code,
            "extractor": extractor,
            "truncated": truncated,
            "length": len(text),
            "text": text,
        }
