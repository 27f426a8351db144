# src/proxy_cache.py

import logging
import re
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from apscheduler.schedulers.background import BackgroundScheduler
from cachetools import Cache

from models import ProxyConfig

logger = logging.getLogger(__name__)

GLOB_CHARS = ("*", "?")
SWEEP_JOB_ID = "cache_sweep"


@dataclass(frozen=True)
class CacheEntry:
    """一条缓存记录：响应体、MIME 类型和绝对过期时间 (epoch 秒)。"""
    data: bytes
    content_type: str
    expires_at: float

    @property
    def size(self) -> int:
        return len(self.data)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return now > self.expires_at


def is_glob(pattern: str) -> bool:
    return any(c in pattern for c in GLOB_CHARS)


def compile_glob(pattern: str) -> "re.Pattern[str]":
    """
    把 glob 模式编译成正则：'*' 匹配任意序列，'?' 匹配单个字符，
    其余字符（包括 '.'）都按字面量处理。
    """
    parts = []
    for c in pattern:
        if c == "*":
            parts.append(".*")
        elif c == "?":
            parts.append(".")
        else:
            parts.append(re.escape(c))
    return re.compile("".join(parts), re.DOTALL)


class ProxyCache:
    """
    有容量上限的内存缓存。

    - 条目数上限 max_entries，总字节数上限 max_bytes，超过时拒绝写入（不做淘汰）。
    - 过期采用惰性策略：get 只是不返回过期条目，真正的删除由后台定时清理完成。
    - add / remove / clear / sweep 共用一把锁；get 不加锁。
    """

    def __init__(self, max_entries: int, max_bytes: int, ttl_seconds: float,
                 sweep_interval_minutes: float = 10.0,
                 clock: Callable[[], float] = time.time,
                 autostart: bool = True):
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self.ttl = ttl_seconds
        self.sweep_interval = sweep_interval_minutes
        self._clock = clock

        # cachetools 负责按条目大小累计 currsize，准入检查保证它永远不会自行淘汰
        self._store = Cache(maxsize=max_bytes, getsizeof=lambda entry: entry.size)
        self._lock = threading.Lock()

        self._sweep_idle = threading.Event()
        self._sweep_idle.set()
        self._abort_sweep = threading.Event()

        self._scheduler: Optional[BackgroundScheduler] = None
        if autostart:
            self.start_sweeper()

    @classmethod
    def from_config(cls, config: ProxyConfig, **kwargs) -> "ProxyCache":
        return cls(
            max_entries=config.max_entries,
            max_bytes=config.max_size,
            ttl_seconds=config.ttl_seconds,
            sweep_interval_minutes=config.sweep_interval,
            **kwargs
        )

    @property
    def resident_bytes(self) -> int:
        return int(self._store.currsize)

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def add(self, key: str, data: bytes, content_type: str) -> bool:
        size = len(data)
        with self._lock:
            if key in self._store:
                logger.debug(f"Cache add refused, key already present: {key}")
                return False
            if self._store.currsize + size > self.max_bytes:
                logger.debug(f"Cache add refused, byte limit {self.max_bytes} would be exceeded: {key} ({size} bytes)")
                return False
            if len(self._store) >= self.max_entries:
                logger.debug(f"Cache add refused, entry limit {self.max_entries} reached: {key}")
                return False

            entry = CacheEntry(data=bytes(data), content_type=content_type,
                               expires_at=self._clock() + self.ttl)
            self._store[key] = entry
            logger.debug(f"Cache add: {key} ({size} bytes), resident size now {self.resident_bytes} bytes")
            return True

    def get(self, key: str) -> Optional[CacheEntry]:
        try:
            entry = self._store[key]
        except KeyError:
            return None
        if entry.is_expired(self._clock()):
            return None
        return entry

    def remove(self, pattern: str) -> int:
        """按精确 key 或 glob 模式删除条目，返回删除数量。"""
        with self._lock:
            if is_glob(pattern):
                matcher = compile_glob(pattern)
                keys = [k for k in self._store if matcher.fullmatch(k)]
            else:
                keys = [pattern] if pattern in self._store else []

            for key in keys:
                del self._store[key]
                logger.info(f"Cache entry removed: {key}")

            if keys:
                logger.info(f"Cache size after removal: {self.resident_bytes} bytes")
            else:
                logger.info(f"No cache entry matches: {pattern}")
            return len(keys)

    def clear(self) -> int:
        with self._lock:
            count = len(self._store)
            self._store.clear()
            return count

    def sweep(self) -> int:
        """删除所有过期条目，返回删除数量。"""
        self._sweep_idle.clear()
        try:
            with self._lock:
                now = self._clock()
                removed = 0
                for key, entry in list(self._store.items()):
                    if self._abort_sweep.is_set():
                        logger.warning("Cache sweep aborted by shutdown.")
                        break
                    if entry.is_expired(now):
                        del self._store[key]
                        removed += 1
                logger.info(f"Cache sweep done, {removed} expired entries removed, resident size {self.resident_bytes} bytes.")
                return removed
        finally:
            self._sweep_idle.set()

    def start_sweeper(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            self.sweep,
            'interval',
            minutes=self.sweep_interval,
            id=SWEEP_JOB_ID,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self._scheduler.start()
        logger.info(f"Cache sweep scheduled every {self.sweep_interval} minutes.")

    @property
    def sweeper_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def shutdown(self, grace: float = 5.0) -> None:
        """停止定时清理；正在进行的清理最多等待 grace 秒，之后强制中止。"""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        if not self._sweep_idle.wait(timeout=grace):
            self._abort_sweep.set()
            logger.warning(f"Cache sweep still running after {grace}s, aborting it.")
        logger.info("Cache sweeper stopped.")

    def snapshot(self) -> List[Tuple[str, int, float]]:
        """(key, 字节数, 过期时间) 列表，供控制台和管理 API 展示。"""
        with self._lock:
            return [(key, entry.size, entry.expires_at) for key, entry in self._store.items()]

    def stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "entries": len(self._store),
                "resident_bytes": self.resident_bytes,
                "max_entries": self.max_entries,
                "max_bytes": self.max_bytes,
                "ttl_seconds": self.ttl,
            }
