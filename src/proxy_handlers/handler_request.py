# src/proxy_handlers/handler_request.py

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from models import ProxyConfig

logger = logging.getLogger(__name__)


@dataclass
class RequestLine:
    method: str
    target: str


@dataclass
class Rejection:
    status: int
    message: str


def parse_request_line(raw: bytes) -> Optional[RequestLine]:
    """
    解析 "METHOD URL" 这一行。连接在发送任何内容之前就关闭时返回 None。
    缺少 URL 时按 "/" 处理，之后会在协议检查中被拒绝。
    """
    if not raw:
        return None
    line = raw.decode("utf-8", errors="replace").strip("\r\n")
    tokens = line.split(" ")
    method = tokens[0]
    target = tokens[1] if len(tokens) > 1 else "/"
    return RequestLine(method=method, target=target)


def target_matches(url: str, config: ProxyConfig) -> bool:
    """按 target_policy 检查 URL 中的主机和端口。端口必须显式写出。"""
    if config.target_policy == "any":
        return True

    if config.target_policy == "self":
        expected_host, expected_port = config.ip_proxy, config.port_proxy
    else:
        expected_host, expected_port = config.nom_server, config.port_server

    try:
        parts = urlsplit(url)
        host, port = parts.hostname, parts.port
    except ValueError:
        return False
    if host is None or port is None:
        return False
    return host.lower() == expected_host.lower() and port == expected_port


def check_request(request: RequestLine, config: ProxyConfig) -> Optional[Rejection]:
    """
    依次检查协议前缀、目标地址和方法。
    通过时返回 None，否则返回应当发给客户端的错误。
    """
    if not request.target.startswith(config.protocole):
        logger.info(f"Rejected {request.target}: scheme is not {config.protocole}")
        return Rejection(403, "Only HTTP protocol is allowed")

    if not target_matches(request.target, config):
        logger.info(f"Rejected {request.target}: target does not match policy '{config.target_policy}'")
        return Rejection(403, "Access Denied: Invalid target")

    if request.method.upper() != "GET":
        logger.info(f"Rejected {request.method} {request.target}: method not implemented")
        return Rejection(501, "This method is not implemented")

    return None
