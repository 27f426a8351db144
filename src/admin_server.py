# src/admin_server.py

import datetime
import logging
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from proxy_cache import ProxyCache
from proxy_server import ProxyServer

logger = logging.getLogger(__name__)

api_router = APIRouter(prefix="/api")


class CacheEntryInfo(BaseModel):
    url: str
    size: int
    expires_at: datetime.datetime


class CacheStats(BaseModel):
    entries: int
    resident_bytes: int
    max_entries: int
    max_bytes: int
    ttl_seconds: float


class CacheContents(BaseModel):
    stats: CacheStats
    items: List[CacheEntryInfo]


class RemovalResult(BaseModel):
    removed: int


class ProxyStatus(BaseModel):
    running: bool
    address: Optional[str] = None
    upstream: str
    upstream_fetches: int


# --- 缓存管理 API，与控制台命令 show / clear / delete 对应 ---
@api_router.get("/cache", response_model=CacheContents, tags=["Cache"])
async def show_cache(request: Request):
    cache: ProxyCache = request.app.state.cache
    items = [
        CacheEntryInfo(url=key, size=size, expires_at=datetime.datetime.fromtimestamp(expires_at))
        for key, size, expires_at in cache.snapshot()
    ]
    return CacheContents(stats=CacheStats(**cache.stats()), items=items)


@api_router.delete("/cache", response_model=RemovalResult, tags=["Cache"])
async def clear_cache(request: Request):
    removed = request.app.state.cache.clear()
    logger.info(f"Cache cleared via admin API, {removed} entries dropped.")
    return RemovalResult(removed=removed)


@api_router.delete("/cache/entries", response_model=RemovalResult, tags=["Cache"])
async def delete_cache_entries(request: Request, pattern: str = Query(..., min_length=1)):
    """按 URL 或 glob 模式 ('*', '?') 删除缓存条目"""
    removed = request.app.state.cache.remove(pattern)
    if removed == 0:
        raise HTTPException(status_code=404, detail=f"No cache entry matches: {pattern}")
    return RemovalResult(removed=removed)


@api_router.get("/proxy", response_model=ProxyStatus, tags=["Proxy"])
async def proxy_status(request: Request):
    proxy: ProxyServer = request.app.state.proxy
    address = proxy.bound_address
    return ProxyStatus(
        running=proxy.running,
        address=f"{address[0]}:{address[1]}" if address else None,
        upstream=f"{proxy.config.nom_server}:{proxy.config.port_server}",
        upstream_fetches=proxy.upstream.fetch_count,
    )


def create_admin_app(cache: ProxyCache, proxy: ProxyServer) -> FastAPI:
    admin_app = FastAPI(title="Cache Proxy - Admin API")
    admin_app.state.cache = cache
    admin_app.state.proxy = proxy
    admin_app.include_router(api_router)
    return admin_app


def build_admin_server(admin_app: FastAPI, host: str, port: int, log_level: str = "info") -> uvicorn.Server:
    """
    返回 uvicorn.Server，由调用方在同一个事件循环里 await server.serve()，
    退出时设置 server.should_exit = True。
    """
    config = uvicorn.Config(admin_app, host=host, port=port,
                            log_level="warning" if log_level == "warn" else log_level)
    logger.info(f"Admin API will listen on http://{host}:{port}/api (docs at /docs)")
    return uvicorn.Server(config)
