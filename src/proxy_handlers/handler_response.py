# src/proxy_handlers/handler_response.py

import asyncio
import logging

logger = logging.getLogger(__name__)

REASONS = {
    200: 'OK',
    403: 'Forbidden',
    404: 'Not Found',
    500: 'Internal Server Error',
    501: 'Not Implemented',
    502: 'Bad Gateway',
    503: 'Service Unavailable',
}

HTML_CONTENT_TYPE = "text/html"


def format_response(status_code: int, body: bytes, content_type: str) -> bytes:
    """
    组装响应：状态行、Content-Type、Content-Length、空行、原始响应体。
    各行以 '\\n' 结尾，不使用分块编码。
    """
    reason = REASONS.get(status_code, 'Error')
    head = (
        f"HTTP/1.1 {status_code} {reason}\n"
        f"Content-Type: {content_type}\n"
        f"Content-Length: {len(body)}\n"
        f"\n"
    )
    return head.encode("utf-8") + body


def format_error_response(status_code: int, message: str) -> bytes:
    reason = REASONS.get(status_code, 'Error')
    html_body = f"<html><body><h1>{reason}</h1><p>{message}</p></body></html>"
    return format_response(status_code, html_body.encode("utf-8"), HTML_CONTENT_TYPE)


async def send_response(writer: asyncio.StreamWriter, payload: bytes) -> bool:
    """只尝试发送一次；失败时记录日志并返回 False，不向上抛出。"""
    try:
        writer.write(payload)
        await writer.drain()
        return True
    except (ConnectionError, OSError, RuntimeError) as e:
        logger.debug(f"Failed to send response to client: {e}")
        return False
