# src/console.py

import asyncio
import datetime
import logging
import sys
from typing import Callable, Optional

from proxy_cache import ProxyCache
from proxy_server import ProxyServer

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Type 'start' to start the proxy, 'stop' to stop it and quit.\n"
    "Type 'clear' to empty the cache, 'show' to list it, 'delete <url|pattern>' to remove entries, "
    "'stats' for counters."
)


class ProxyConsole:
    """操作员控制台：从标准输入读取命令，调用代理和缓存已有的操作。"""

    def __init__(self, proxy: ProxyServer, cache: ProxyCache,
                 read_line: Optional[Callable[[], str]] = None,
                 write: Callable[[str], None] = print):
        self.proxy = proxy
        self.cache = cache
        self._read_line = read_line or sys.stdin.readline
        self._write = write
        self._proxy_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        self._write(HELP_TEXT)
        while True:
            line = await asyncio.to_thread(self._read_line)
            if not line:
                # stdin 已关闭，按 stop 处理
                await self.execute("stop")
                return
            if not await self.execute(line):
                return

    async def execute(self, line: str) -> bool:
        """执行一条命令；返回 False 表示控制台应当退出。"""
        command = line.strip()
        if not command:
            return True
        name, _, argument = command.partition(" ")
        name = name.lower()
        argument = argument.strip()

        if name == "start":
            self._start()
        elif name == "stop":
            await self._stop()
            return False
        elif name == "clear":
            removed = self.cache.clear()
            self._write(f"Cache cleared ({removed} entries).")
        elif name == "show":
            self._show()
        elif name == "delete" and argument:
            removed = self.cache.remove(argument)
            if removed:
                self._write(f"Removed {removed} cache entries for: {argument}")
            else:
                self._write(f"No cache entry matches: {argument}")
        elif name == "stats":
            stats = self.cache.stats()
            self._write(
                f"Entries: {stats['entries']}/{stats['max_entries']} | "
                f"Size: {stats['resident_bytes']:,}/{stats['max_bytes']:,} bytes | "
                f"Upstream fetches: {self.proxy.upstream.fetch_count}"
            )
        elif name == "help":
            self._write(HELP_TEXT)
        else:
            self._write("Unknown command.")
        return True

    def _start(self) -> None:
        if self.proxy.running or (self._proxy_task and not self._proxy_task.done()):
            self._write("The proxy is already running.")
            return
        self._proxy_task = asyncio.create_task(self.proxy.start())
        self._proxy_task.add_done_callback(self._on_proxy_done)
        self._write("Start command sent to the proxy.")

    def _on_proxy_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Proxy listener failed: {exc}")
            self._write(f"Proxy failed to listen on {self.proxy.config.ip_proxy}:{self.proxy.config.port_proxy}: {exc}")

    async def _stop(self) -> None:
        task = self._proxy_task
        if task is not None and not task.done():
            if self.proxy.running:
                self.proxy.stop()
            else:
                # 还没有完成绑定
                task.cancel()
            await asyncio.wait([task])
        self._write("Proxy stopped.")

    def _show(self) -> None:
        snapshot = self.cache.snapshot()
        if not snapshot:
            self._write("The cache is empty.")
            return
        self._write("Cache contents:")
        for key, size, expires_at in snapshot:
            expires = datetime.datetime.fromtimestamp(expires_at).strftime('%Y-%m-%d %H:%M:%S')
            self._write(f"URL: {key}")
            self._write(f"  Size: {size} bytes")
            self._write(f"  Expires: {expires}")
