# src/proxy_handlers/handler_upstream.py

import logging
from typing import Optional, Tuple
from urllib.parse import urlsplit

import aiohttp
from aiohttp import ClientSession
from yarl import URL

from models import ProxyConfig

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UpstreamError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UpstreamNotFound(UpstreamError):
    pass


class UpstreamClient:
    """
    向固定的上游服务器发起 GET 请求。
    fetch_count 记录实际发出的上游请求数，便于观察缓存是否生效。
    """

    def __init__(self, config: ProxyConfig, session: Optional[ClientSession] = None):
        self.config = config
        self.fetch_count = 0
        self._session = session
        self._owns_session = session is None

    def open(self) -> None:
        """创建上游会话；必须在事件循环内调用。代理每次启动时调用一次。"""
        if self._session is not None and not self._session.closed:
            return
        timeout = aiohttp.ClientTimeout(total=self.config.upstream_timeout)
        self._session = aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar(), timeout=timeout)
        self._owns_session = True
        logger.info("Upstream AIOHTTP ClientSession created.")

    def _get_session(self) -> ClientSession:
        if self._session is None:
            self.open()
        elif self._session.closed:
            # 关闭后不再自动重建，避免泄漏无人关闭的会话
            raise UpstreamError("Upstream session is closed")
        return self._session

    def build_url(self, target: str) -> str:
        """保留请求 URL 的 path 和 query，替换为上游的协议、主机和端口。"""
        parts = urlsplit(target)
        upstream = f"{self.config.protocole}{self.config.nom_server}:{self.config.port_server}{parts.path}"
        if parts.query:
            upstream += f"?{parts.query}"
        return upstream

    async def fetch(self, target: str) -> Tuple[bytes, str]:
        """
        返回 (响应体, Content-Type)。
        上游 404 抛出 UpstreamNotFound，其他 >= 400 的状态抛出 UpstreamError；
        网络错误以 aiohttp.ClientError / asyncio.TimeoutError 的形式抛出。
        """
        upstream_url = self.build_url(target)
        logger.info(f"Forwarding to upstream server: {upstream_url}")
        session = self._get_session()
        self.fetch_count += 1

        # encoded=True: 不对 path 和 query 重新编码
        async with session.get(URL(upstream_url, encoded=True)) as resp:
            if resp.status == 404:
                logger.info(f"Resource not found upstream: {upstream_url}")
                raise UpstreamNotFound(f"Resource not found: {upstream_url}", status=404)
            if resp.status >= 400:
                raise UpstreamError(f"Upstream returned HTTP {resp.status} for {upstream_url}", status=resp.status)

            content_type = resp.headers.get("Content-Type") or DEFAULT_CONTENT_TYPE
            body = await resp.read()
            logger.debug(f"Upstream response {resp.status}, Content-Type: {content_type}, {len(body)} bytes")
            return body, content_type

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            logger.info("Upstream AIOHTTP ClientSession closed.")
