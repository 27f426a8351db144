# src/proxy_server.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

import aiohttp

from models import ProxyConfig
from proxy_cache import ProxyCache
from proxy_handlers import handler_request, handler_response
from proxy_handlers.handler_upstream import UpstreamClient, UpstreamError, UpstreamNotFound

logger = logging.getLogger(__name__)


@dataclass
class ClientConnection:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    peer: object
    responded: bool = False


class ProxyServer:
    """
    单目标缓存代理。每个连接只处理一个请求：
    读取请求行 -> 校验 -> 命中缓存或请求上游 -> 写回响应 -> 关闭连接。
    """

    def __init__(self, config: ProxyConfig, cache: ProxyCache,
                 upstream: Optional[UpstreamClient] = None):
        self.config = config
        self.cache = cache
        self.upstream = upstream or UpstreamClient(config)

        self.server: Optional[asyncio.AbstractServer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._started: Optional[asyncio.Event] = None
        self._running = False
        self._handlers: Set[asyncio.Task] = set()

        # 0 表示不限制并发连接数
        self._slots = asyncio.Semaphore(config.max_connections) if config.max_connections else None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_handlers(self) -> int:
        return len(self._handlers)

    @property
    def bound_address(self):
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[:2]

    async def start(self) -> None:
        """
        绑定监听地址并接受连接，直到 stop() 被调用。
        停止后先等待所有进行中的连接处理完毕，再关闭上游会话。
        """
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self._started is None:
            self._started = asyncio.Event()

        self.server = await asyncio.start_server(
            self.handle_client,
            self.config.ip_proxy,
            self.config.port_proxy
        )
        self.upstream.open()
        self._running = True
        addr = self.bound_address
        logger.info(f"Proxy listening on {addr[0]}:{addr[1]}, upstream {self.config.nom_server}:{self.config.port_server}")
        self._started.set()

        try:
            await self._stop_event.wait()
        finally:
            self._running = False
            self.server.close()
            await self._drain_handlers()
            await self.upstream.close()
            logger.info("Proxy stopped.")

    async def _drain_handlers(self) -> None:
        if not self._handlers:
            return
        logger.info(f"Waiting for {len(self._handlers)} in-flight connections to finish.")
        await asyncio.gather(*list(self._handlers), return_exceptions=True)

    async def wait_started(self) -> None:
        if self._started is None:
            self._started = asyncio.Event()
        await self._started.wait()

    def stop(self) -> None:
        """停止接受新连接；正在处理的连接不受影响。可以在其他线程调用。"""
        if self._loop is None or self._stop_event is None:
            return
        self._running = False
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            self._stop_event.set()
        else:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    async def handle_client(self, reader: asyncio.StreamReader,
                            writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        self._handlers.add(task)
        conn = ClientConnection(reader, writer, writer.get_extra_info('peername'))
        try:
            if self._slots is None:
                await self._handle_request(conn)
            else:
                async with self._slots:
                    await self._handle_request(conn)
        except Exception as e:
            logger.error(f"Unexpected error while handling {conn.peer}: {e}", exc_info=True)
            if not conn.responded:
                await self._respond(conn, handler_response.format_error_response(500, "Error processing the request"))
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            self._handlers.discard(task)

    async def _respond(self, conn: ClientConnection, payload: bytes) -> None:
        # 每个连接只发送一次响应
        conn.responded = True
        await handler_response.send_response(conn.writer, payload)

    async def _handle_request(self, conn: ClientConnection) -> None:
        try:
            raw_line = await conn.reader.readline()
        except (ConnectionError, OSError, ValueError) as e:
            logger.debug(f"Failed to read request line from {conn.peer}: {e}")
            return

        request = handler_request.parse_request_line(raw_line)
        if request is None:
            logger.debug(f"Connection from {conn.peer} closed before sending a request.")
            return
        logger.debug(f"{conn.peer} -> {request.method} {request.target}")

        rejection = handler_request.check_request(request, self.config)
        if rejection:
            await self._respond(conn, handler_response.format_error_response(rejection.status, rejection.message))
            return

        entry = self.cache.get(request.target)
        if entry is not None:
            logger.info(f"Cache HIT for: {request.target}")
            await self._respond(conn, handler_response.format_response(200, entry.data, entry.content_type))
            return
        logger.info(f"Cache MISS for: {request.target}")

        try:
            body, content_type = await self.upstream.fetch(request.target)
        except UpstreamNotFound:
            await self._respond(conn, handler_response.format_error_response(500, "Error fetching data from target server"))
            return
        except (UpstreamError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Upstream fetch failed for {request.target}: {e}")
            await self._respond(conn, handler_response.format_error_response(500, "Error processing the request"))
            return

        if self.cache.add(request.target, body, content_type):
            logger.info(f"Cache SET for: {request.target}")
        else:
            logger.info(f"Response for {request.target} not cached (duplicate or cache full).")

        await self._respond(conn, handler_response.format_response(200, body, content_type))
