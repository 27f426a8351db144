# src/models.py

from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Literal, Optional

class ProxyConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    # 缓存
    expiration_ms: int = Field(alias="expiration", gt=0)  # TTL, 毫秒
    max_entries: int = Field(alias="maxEntries", ge=0)
    max_size: int = Field(alias="maxSize", ge=0)  # 字节
    sweep_interval: float = Field(default=10.0, alias="sweepInterval", gt=0)  # 分钟
    shutdown_grace: float = Field(default=5.0, alias="shutdownGrace", ge=0)  # 秒

    # 代理监听地址
    ip_proxy: str
    port_proxy: int = Field(ge=0, le=65535)

    # 上游服务器
    nom_server: str
    port_server: int = Field(ge=1, le=65535)
    protocole: str = Field(default="http://")
    upstream_timeout: Optional[float] = Field(default=None, alias="upstreamTimeout", gt=0)

    # "self": 目标必须是代理自身; "upstream": 目标必须是上游; "any": 不检查
    target_policy: Literal["self", "upstream", "any"] = Field(default="self", alias="targetPolicy")
    max_connections: int = Field(default=256, alias="maxConnections", ge=0)  # 0 表示不限制

    admin_port: int = Field(default=0, ge=0, le=65535)  # 0 表示不启动管理 API
    log_level: Literal["debug", "info", "warn", "error"] = Field(default="info")

    @field_validator("ip_proxy", "nom_server", "protocole")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def ttl_seconds(self) -> float:
        return self.expiration_ms / 1000.0
