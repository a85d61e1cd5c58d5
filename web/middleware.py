#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - aiohttp 中间件

在每个请求进入业务处理器之前检查封禁状态并分析请求。
检测引擎本身是同步的，这里放到默认线程池中执行。
"""

import asyncio
import io
import logging
from typing import Optional

from aiohttp import web

from analysis.request_info import RequestInfo
from analysis.threat_detector import MAX_BODY_INSPECTION_BYTES
from enforcement.monitor import SecurityMonitor

logger = logging.getLogger('security.web')


async def build_request_info(request: web.Request) -> RequestInfo:
    """从aiohttp请求构建请求信息

    仅在声明长度不超过1MB时读取请求体；aiohttp会缓存已读取的请求体，
    业务处理器仍可再次读取。
    """
    body: Optional[io.BytesIO] = None
    length = request.content_length

    if request.can_read_body and length and 0 < length <= MAX_BODY_INSPECTION_BYTES:
        try:
            body = io.BytesIO(await request.read())
        except Exception as e:
            logger.warning(f"Failed to read request body: {e}")

    return RequestInfo(
        remote_addr=request.remote,
        path=request.path,
        query_string=request.query_string,
        method=request.method,
        headers=dict(request.headers),
        body=body,
        content_length=length
    )


def _deny_response() -> web.Response:
    return web.json_response({'error': 'Access denied'}, status=403)


def security_middleware(monitor: SecurityMonitor):
    """创建安全检测中间件

    Args:
        monitor: 安全监控器

    Returns:
        aiohttp中间件
    """
    @web.middleware
    async def middleware(request: web.Request, handler):
        request_info = await build_request_info(request)
        client_ip = monitor.detector.extract_client_ip(request_info)
        loop = asyncio.get_running_loop()

        if await loop.run_in_executor(None, monitor.is_blocked, client_ip):
            logger.info(f"拒绝已封禁IP的请求: {client_ip} {request.method} {request.path}")
            return _deny_response()

        assessment = await loop.run_in_executor(None, monitor.analyze_request, request_info)
        if assessment.blocked:
            return _deny_response()

        return await handler(request)

    return middleware
