"""
外部 provider 协议（codebase 检索 / URL 抓取 / 联网搜索）。

说明：
- 相关内置工具默认 fail-closed：未注入 provider 时返回 `disabled` 错误；
- 离线回归必须使用 fake provider 或 `httpx.MockTransport`（不得依赖外网）；
- provider 方法可以是同步或异步（由调用方 `maybe_await`）。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from tool_runtime.workspace.base import MaybeAwaitable

logger = logging.getLogger(__name__)


class CodebaseSearchProvider(Protocol):
    """代码库检索：返回 [{"path":..., "snippet":..., "score":...}]。"""

    def search(self, query: str) -> MaybeAwaitable[List[Dict[str, Any]]]:
        ...


class WebSearchProvider(Protocol):
    """联网搜索：返回 [{"title":..., "url":..., "snippet":...}]。"""

    def search(self, query: str) -> MaybeAwaitable[List[Dict[str, Any]]]:
        ...


@dataclass(frozen=True)
class FetchedContent:
    url: str
    status_code: int
    content_type: str
    text: str
    truncated: bool = False


class UrlFetcher(Protocol):
    def fetch(self, url: str) -> MaybeAwaitable[FetchedContent]:
        ...


class HttpxUrlFetcher:
    """
    基于 httpx.AsyncClient 的 URL 抓取实现。

    参数：
    - timeout_sec：请求超时（超时映射为 TimeoutError，调用转入 errored/timeout）
    - max_bytes：正文最多读取的字节数（达到后停止读取，结果标记 truncated）
    - transport：可选；测试注入 `httpx.MockTransport`
    """

    def __init__(
        self,
        *,
        timeout_sec: float = 20.0,
        max_bytes: int = 256 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_sec)
        self._max_bytes = max_bytes
        self._transport = transport

    async def fetch(self, url: str) -> FetchedContent:
        """
        流式读取正文，累计达到 max_bytes 即停止读取并关闭连接。

        异常：
        - TimeoutError：连接或读取超时
        """

        chunks: List[bytes] = []
        size = 0
        truncated = False
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport, follow_redirects=True) as client:
                async with client.stream("GET", url) as resp:
                    async for chunk in resp.aiter_bytes():
                        room = self._max_bytes - size
                        if len(chunk) > room:
                            chunks.append(chunk[:room])
                            size += room
                            truncated = True
                            break
                        chunks.append(chunk)
                        size += len(chunk)
                    encoding = resp.encoding or "utf-8"
                    final_url = str(resp.url)
                    status_code = resp.status_code
                    content_type = resp.headers.get("content-type", "")
        except httpx.TimeoutException as e:
            raise TimeoutError(f"fetch timed out: {url}") from e

        if truncated:
            logger.debug("fetch of %s truncated at %d bytes", url, self._max_bytes)
        return FetchedContent(
            url=final_url,
            status_code=status_code,
            content_type=content_type,
            text=b"".join(chunks).decode(encoding, errors="replace"),
            truncated=truncated,
        )
