"""
浏览器工具模块 (agent/tools/browser.py)

模块职责：
    基于 Playwright 的无头浏览器自动化，提供 browser__* 工具组：
      navigate / click / type / screenshot / snapshot / evaluate / get_text / wait

实现要点：
    - Playwright 延迟导入、浏览器延迟启动：第一次调用浏览器工具时才启动
    - 每个 Agent 一个持久的 BrowserContext，cookie 和登录态在多次调用之间保留
    - 同一 Agent 的调用通过 asyncio.Lock 串行化，避免并发操作同一个页面
    - 任何 Playwright 异常都转换为 "Browser tool error: ..."

由 deep_tools 特性开关控制是否暴露给模型。
"""

import asyncio
import base64
import json
from typing import Any

from loguru import logger

from agentbox.agent.tools.base import Tool, ToolError, current_context
from agentbox.config.schema import BrowserToolConfig

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36"
)

MAX_TEXT_OUTPUT = 10000

# 页面结构快照：标题、按钮、输入框、链接、正文，总长度不超过 maxLen
_SNAPSHOT_JS = """
(maxLen) => {
  const parts = [];
  let total = 0;
  const add = (t) => { if (total + t.length > maxLen) return; parts.push(t); total += t.length; };
  add(`URL: ${location.href}`);
  add(`Title: ${document.title}`);
  add('');
  const headings = document.querySelectorAll('h1, h2, h3');
  if (headings.length) {
    add('## Headings');
    headings.forEach(h => add(`  ${h.tagName.toLowerCase()}: ${h.innerText.trim().slice(0, 100)}`));
    add('');
  }
  const buttons = document.querySelectorAll('button, [role="button"], input[type="submit"]');
  if (buttons.length) {
    add('## Buttons');
    Array.from(buttons).slice(0, 20).forEach(b => {
      const text = (b.innerText || b.value || '').trim();
      const id = b.id ? `#${b.id}` : '';
      const cls = typeof b.className === 'string' && b.className ? `.${b.className.split(' ')[0]}` : '';
      add(`  [${text.slice(0, 40)}] ${id}${cls}`);
    });
    add('');
  }
  const inputs = document.querySelectorAll('input:not([type="hidden"]):not([type="submit"]), textarea, select');
  if (inputs.length) {
    add('## Inputs');
    Array.from(inputs).slice(0, 15).forEach(el => {
      const type = el.type || el.tagName.toLowerCase();
      add(`  [${type}] name="${el.name || el.id || ''}" placeholder="${el.placeholder || ''}" value="${(el.value || '').slice(0, 30)}"`);
    });
    add('');
  }
  const links = document.querySelectorAll('a[href]');
  if (links.length) {
    add('## Links');
    Array.from(links).slice(0, 25).forEach(a => {
      const text = (a.innerText || '').trim().slice(0, 50);
      const href = (a.href || '').slice(0, 80);
      if (text || href) add(`  "${text}" -> ${href}`);
    });
    add('');
  }
  add('## Content');
  const main = document.querySelector('main, [role="main"], article, .content, #content') || document.body;
  const body = main ? (main.innerText || '').trim() : '';
  add(body.slice(0, Math.max(0, maxLen - total)));
  return parts.join('\\n');
}
"""


class BrowserManager:
    """
    Playwright 浏览器管理：一个浏览器进程，每个 Agent 一个上下文和页面。

    【Java 开发者类比】
    相当于一个懒加载的单例连接池：browser 是连接工厂，每个 Agent 分到一个长期持有的连接。
    """

    def __init__(self, config: BrowserToolConfig | None = None):
        self.config = config or BrowserToolConfig()
        self._playwright: Any = None
        self._browser: Any = None
        self._contexts: dict[str, Any] = {}
        self._pages: dict[str, Any] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._start_lock = asyncio.Lock()

    def lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    async def _ensure_browser(self) -> Any:
        async with self._start_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            try:
                from playwright.async_api import async_playwright
            except ImportError:
                raise ToolError(
                    "Playwright is not installed. Run: pip install playwright && playwright install chromium"
                )

            if self._playwright is None:
                self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.config.browser_type)
            self._browser = await launcher.launch(
                headless=self.config.headless,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
            )
            logger.info(f"Browser launched: {self.config.browser_type} (headless={self.config.headless})")
            return self._browser

    async def page_for(self, agent_id: str) -> Any:
        """返回该 Agent 的页面，必要时创建上下文和页面。"""
        page = self._pages.get(agent_id)
        if page is not None and not page.is_closed():
            return page

        browser = await self._ensure_browser()
        context = self._contexts.get(agent_id)
        if context is None:
            context = await browser.new_context(
                user_agent=USER_AGENT,
                viewport={"width": 1280, "height": 720},
                ignore_https_errors=True,
            )
            self._contexts[agent_id] = context
            logger.info(f"Created browser context for agent {agent_id}")

        page = await context.new_page()
        page.set_default_timeout(15000)
        page.set_default_navigation_timeout(self.config.timeout_ms)
        self._pages[agent_id] = page
        return page

    async def close_agent(self, agent_id: str) -> None:
        page = self._pages.pop(agent_id, None)
        if page is not None and not page.is_closed():
            await page.close()
        context = self._contexts.pop(agent_id, None)
        if context is not None:
            await context.close()

    async def shutdown(self) -> None:
        for agent_id in list(self._contexts):
            await self.close_agent(agent_id)
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser stopped")


class _BrowserTool(Tool):
    def __init__(self, manager: BrowserManager):
        self.manager = manager

    async def execute(self, **kwargs: Any) -> str:
        agent_id = current_context().agent_id
        async with self.manager.lock_for(agent_id):
            try:
                page = await self.manager.page_for(agent_id)
                return await self.run(page, **kwargs)
            except ToolError:
                raise
            except Exception as e:
                raise ToolError(f"Browser tool error: {e}")

    async def run(self, page: Any, **kwargs: Any) -> str:
        raise NotImplementedError


def _need(value: Any, name: str) -> None:
    if value is None or value == "":
        raise ToolError(f"Missing {name} parameter")


class NavigateTool(_BrowserTool):
    name = "browser__navigate"
    description = "[browser] Navigate to a URL. Returns the page title and a text snapshot of visible content."
    parameters = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to navigate to (must start with http:// or https://)"},
            "wait_for": {
                "type": "string",
                "enum": ["load", "domcontentloaded", "networkidle"],
                "description": 'Wait condition (default: "domcontentloaded")',
            },
        },
        "required": ["url"],
    }

    async def run(self, page: Any, url: str = "", wait_for: str = "domcontentloaded", **kwargs: Any) -> str:
        _need(url, "url")
        if not url.startswith(("http://", "https://")):
            url = "https://" + url
        await page.goto(url, wait_until=wait_for or "domcontentloaded")
        title = await page.title()
        body = await page.evaluate("() => document.body ? document.body.innerText.slice(0, 3000) : '(empty page)'")
        return f"Navigated to: {page.url}\nTitle: {title}\n\n--- Page Content Preview ---\n{body}"


class ClickTool(_BrowserTool):
    name = "browser__click"
    description = "[browser] Click an element on the page. Use CSS selector or text content to identify the element."
    parameters = {
        "type": "object",
        "properties": {
            "selector": {
                "type": "string",
                "description": 'CSS selector (e.g. "button.submit", "#login-btn") or text:="Button Text"',
            },
        },
        "required": ["selector"],
    }

    async def run(self, page: Any, selector: str = "", **kwargs: Any) -> str:
        _need(selector, "selector")
        if selector.startswith("text:="):
            text = selector[len("text:="):].replace('"', "")
            await page.get_by_text(text, exact=False).first.click()
        else:
            await page.click(selector)
        await page.wait_for_timeout(500)
        return f"Clicked: {selector}\nCurrent URL: {page.url}"


class TypeTool(_BrowserTool):
    name = "browser__type"
    description = "[browser] Type text into an input field. Finds the element by selector, clears it, then types."
    parameters = {
        "type": "object",
        "properties": {
            "selector": {"type": "string", "description": "CSS selector for the input element"},
            "text": {"type": "string", "description": "Text to type into the field"},
            "press_enter": {"type": "boolean", "description": "Press Enter after typing (default: false)"},
        },
        "required": ["selector", "text"],
    }

    async def run(self, page: Any, selector: str = "", text: str | None = None, press_enter: bool = False,
                  **kwargs: Any) -> str:
        _need(selector, "selector")
        if text is None:
            raise ToolError("Missing text parameter")
        await page.fill(selector, "")
        await page.type(selector, text)
        if press_enter:
            await page.press(selector, "Enter")
            await page.wait_for_timeout(500)
        shown = text[:50] + ("..." if len(text) > 50 else "")
        return f'Typed "{shown}" into {selector}' + (" (+ Enter)" if press_enter else "")


class ScreenshotTool(_BrowserTool):
    name = "browser__screenshot"
    description = "[browser] Take a screenshot of the current page. Returns base64-encoded PNG."
    parameters = {
        "type": "object",
        "properties": {
            "full_page": {"type": "boolean", "description": "Capture the full scrollable page (default: false)"},
            "selector": {"type": "string", "description": "CSS selector to screenshot a specific element (optional)"},
        },
    }

    async def run(self, page: Any, full_page: bool = False, selector: str | None = None, **kwargs: Any) -> str:
        if selector:
            element = await page.query_selector(selector)
            if element is None:
                raise ToolError(f"Element not found: {selector}")
            data = await element.screenshot(type="png")
        else:
            data = await page.screenshot(type="png", full_page=bool(full_page))
        encoded = base64.b64encode(data).decode()
        return (
            f"Screenshot captured ({len(data)} bytes, {len(encoded)} base64 chars).\n"
            f"Base64: data:image/png;base64,{encoded[:200]}... [truncated for display]"
        )


class SnapshotTool(_BrowserTool):
    name = "browser__snapshot"
    description = (
        "[browser] Get a structured text snapshot of the page. Extracts headings, links, buttons, inputs, "
        "and text content. Much cheaper than a screenshot for understanding page structure."
    )
    parameters = {
        "type": "object",
        "properties": {
            "max_length": {"type": "integer", "description": "Max characters to return (default: 8000)"},
        },
    }

    async def run(self, page: Any, max_length: int | None = None, **kwargs: Any) -> str:
        return await page.evaluate(_SNAPSHOT_JS, max_length or 8000)


class EvaluateTool(_BrowserTool):
    name = "browser__evaluate"
    description = "[browser] Execute JavaScript in the browser page context. Returns the result as a string."
    parameters = {
        "type": "object",
        "properties": {"script": {"type": "string", "description": "JavaScript code to execute in the page"}},
        "required": ["script"],
    }

    async def run(self, page: Any, script: str = "", **kwargs: Any) -> str:
        _need(script, "script")
        result = await page.evaluate(script)
        if result is None:
            return "(undefined)"
        output = result if isinstance(result, str) else json.dumps(result, indent=2, ensure_ascii=False)
        return output[:MAX_TEXT_OUTPUT] or "(undefined)"


class GetTextTool(_BrowserTool):
    name = "browser__get_text"
    description = "[browser] Extract text content from elements matching a selector. Good for scraping specific data."
    parameters = {
        "type": "object",
        "properties": {"selector": {"type": "string", "description": "CSS selector to match elements"}},
        "required": ["selector"],
    }

    async def run(self, page: Any, selector: str = "", **kwargs: Any) -> str:
        _need(selector, "selector")
        texts = await page.eval_on_selector_all(
            selector, "els => els.map(el => (el.innerText || '').trim()).filter(Boolean)",
        )
        if not texts:
            raise ToolError(f"No elements found matching: {selector}")
        return f"Found {len(texts)} element(s):\n\n" + "\n---\n".join(texts)[:MAX_TEXT_OUTPUT]


class WaitTool(_BrowserTool):
    name = "browser__wait"
    description = (
        "[browser] Wait for an element to appear on the page. "
        "Use after navigation or clicks that trigger dynamic content."
    )
    parameters = {
        "type": "object",
        "properties": {
            "selector": {"type": "string", "description": "CSS selector to wait for"},
            "timeout_ms": {"type": "integer", "description": "Max wait time in milliseconds (default: 10000)"},
        },
        "required": ["selector"],
    }

    async def run(self, page: Any, selector: str = "", timeout_ms: int | None = None, **kwargs: Any) -> str:
        _need(selector, "selector")
        await page.wait_for_selector(selector, timeout=timeout_ms or 10000)
        return f"Element appeared: {selector}"


def browser_tools(manager: BrowserManager) -> list[Tool]:
    return [
        NavigateTool(manager),
        ClickTool(manager),
        TypeTool(manager),
        ScreenshotTool(manager),
        SnapshotTool(manager),
        EvaluateTool(manager),
        GetTextTool(manager),
        WaitTool(manager),
    ]
