"""网络工具：websearch（DuckDuckGo HTML）与 webfetch。"""

import html
import re
from typing import Any
from urllib.parse import quote_plus, unquote

import httpx
from loguru import logger

from nene.agent.tools.base import Approval, Tool, ToolResult

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
MAX_FETCH_BYTES = 5 * 1024 * 1024

_RESULT_LINK_RE = re.compile(r'<a[^>]*class="[^"]*result__a[^"]*"[^>]*href="([^"]+)"[^>]*>([\s\S]*?)</a>')
_RESULT_SNIPPET_RE = re.compile(r'<a class="result__snippet[^"]*".*?>([\s\S]*?)</a>')
_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)


def strip_tags(content: str) -> str:
    """去掉所有 HTML 标签。"""
    return _TAG_RE.sub("", content)


def looks_like_html(content: str) -> bool:
    trimmed = content.strip()
    return (
        trimmed.startswith("<!DOCTYPE")
        or trimmed.lower().startswith("<html")
        or ("<" in trimmed and ">" in trimmed)
    )


def extract_text_from_html(content: str) -> str:
    """移除 script/style 与标签后，按行清理空白。"""
    text = _SCRIPT_RE.sub("", content)
    text = _STYLE_RE.sub("", text)
    text = html.unescape(strip_tags(text))
    lines = [line.strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


def parse_search_results(page: str, count: int, query: str) -> str:
    """从 DuckDuckGo HTML 结果页提取标题、链接与摘要。"""
    links = _RESULT_LINK_RE.findall(page)[: count + 5]
    if not links:
        return f"No results found for: {query}"

    snippets = _RESULT_SNIPPET_RE.findall(page)[: count + 5]
    lines = [f"Search results for: {query}"]

    for i, (url, title) in enumerate(links[:count]):
        title = html.unescape(strip_tags(title)).strip()
        # DuckDuckGo 把真实地址包在跳转链接的 uddg 参数里
        if "uddg=" in url:
            decoded = unquote(url)
            url = decoded[decoded.index("uddg=") + 5:]

        lines.append(f"\n{i + 1}. {title}")
        lines.append(f"   URL: {url}")
        if i < len(snippets):
            snippet = html.unescape(strip_tags(snippets[i])).strip()
            if snippet:
                lines.append(f"   {snippet}")

    return "\n".join(lines)


class WebSearchTool(Tool):
    """通过 DuckDuckGo HTML 接口搜索网页。"""

    def __init__(self, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "websearch"

    @property
    def description(self) -> str:
        return (
            "Search the web using DuckDuckGo. Returns search results with titles, URLs, and snippets. "
            "Use this to find current information, news, or any content beyond your knowledge cutoff."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
                "num_results": {
                    "type": "integer",
                    "description": "Number of results to return (default: 5)",
                    "minimum": 1,
                    "maximum": 10,
                },
            },
            "required": ["query"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        return Approval("Agent wants to search the web", f"Search: {params.get('query', '')}")

    async def execute(self, query: str, num_results: int = 5, **kwargs: Any) -> ToolResult:
        if not query:
            return ToolResult.error("query is required")
        if num_results <= 0:
            num_results = 5

        url = f"https://html.duckduckgo.com/html/?q={quote_plus(query)}"
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"websearch request failed: {e}")
            return ToolResult.error(f"request failed: {e}")

        return ToolResult.ok(parse_search_results(response.text, num_results, query))


class WebFetchTool(Tool):
    """抓取网页内容并抽取可读文本。"""

    def __init__(
        self,
        max_chars: int = 10000,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_chars = max_chars
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "webfetch"

    @property
    def description(self) -> str:
        return (
            "Fetch content from a URL. Extracts readable text from web pages. "
            "Use this to get detailed content from a specific URL found via web search."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "url": {"type": "string", "description": "The URL to fetch content from"},
                "max_chars": {
                    "type": "integer",
                    "description": "Maximum characters to return (default: 10000)",
                    "minimum": 1000,
                    "maximum": 50000,
                },
            },
            "required": ["url"],
        }

    def make_approval(self, params: dict[str, Any]) -> Approval | None:
        return Approval("Agent wants to fetch web content", f"Fetch: {params.get('url', '')}")

    async def execute(self, url: str, max_chars: int | None = None, **kwargs: Any) -> ToolResult:
        if not url:
            return ToolResult.error("url is required")
        if not url.startswith(("http://", "https://")):
            return ToolResult.error("URL must start with http:// or https://")
        limit = max_chars if max_chars and max_chars > 0 else self.max_chars

        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,text/plain;q=0.8,*/*;q=0.1",
        }
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=headers,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"webfetch request failed: {e}")
            return ToolResult.error(f"request failed: {e}")

        if response.status_code != 200:
            return ToolResult.error(f"request failed with status: {response.status_code}")

        content = response.content[:MAX_FETCH_BYTES].decode(response.encoding or "utf-8", errors="replace")
        if "text/html" in response.headers.get("content-type", "") or looks_like_html(content):
            content = extract_text_from_html(content)

        if len(content) > limit:
            content = content[:limit] + "\n... (truncated)"

        return ToolResult.ok(f"Content from {url}:\n\n{content}")
