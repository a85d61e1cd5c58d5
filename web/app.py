#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - Web应用
"""

import asyncio

from aiohttp import web

from enforcement.monitor import SecurityMonitor
from web.middleware import security_middleware

MONITOR_KEY = web.AppKey('security_monitor', SecurityMonitor)


async def handle_health(request: web.Request) -> web.Response:
    """健康检查，返回存储存活状态"""
    monitor = request.app[MONITOR_KEY]
    health = await asyncio.get_running_loop().run_in_executor(None, monitor.health)
    status = 200 if health['storage_available'] else 503
    return web.json_response(health, status=status)


def create_app(monitor: SecurityMonitor) -> web.Application:
    """创建受安全中间件保护的应用

    Args:
        monitor: 安全监控器

    Returns:
        aiohttp应用
    """
    app = web.Application(middlewares=[security_middleware(monitor)])
    app[MONITOR_KEY] = monitor
    app.router.add_get('/health', handle_health)
    return app
