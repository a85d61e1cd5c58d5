#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
aiohttp 中间件测试
"""

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from enforcement.monitor import SecurityMonitor
from tests.fake_redis import FakeRedis
from utils.config import SecurityConfig
from utils.storage import SecurityStorage
from web.app import MONITOR_KEY, create_app

CLIENT_HEADERS = {
    'X-Forwarded-For': '203.0.113.5',
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) Firefox/121.0',
}


async def handle_index(request: web.Request) -> web.Response:
    return web.json_response({'status': 'ok'})


async def handle_echo(request: web.Request) -> web.Response:
    return web.Response(body=await request.read())


class SecurityMiddlewareTest(AioHTTPTestCase):

    async def get_application(self):
        self.config = SecurityConfig(env={})
        self.redis = FakeRedis()
        self.monitor = SecurityMonitor(self.config, SecurityStorage(self.config, self.redis))

        app = create_app(self.monitor)
        app.router.add_get('/', handle_index)
        app.router.add_get('/search', handle_index)
        app.router.add_post('/echo', handle_echo)
        return app

    async def test_normal_request_passes(self):
        async with self.client.get('/', headers=CLIENT_HEADERS) as resp:
            self.assertEqual(resp.status, 200)
            self.assertEqual(await resp.json(), {'status': 'ok'})

    async def test_blocked_ip_is_denied(self):
        self.monitor.storage.block_ip('203.0.113.5', 'brute_force', 120)

        async with self.client.get('/', headers=CLIENT_HEADERS) as resp:
            self.assertEqual(resp.status, 403)
            self.assertEqual(await resp.json(), {'error': 'Access denied'})

    async def test_critical_request_is_denied_and_ip_blocked(self):
        async with self.client.get('/search', params={'id': "1' OR 1=1--"}, headers=CLIENT_HEADERS) as resp:
            self.assertEqual(resp.status, 403)

        self.assertTrue(self.monitor.is_blocked('203.0.113.5'))

        async with self.client.get('/', headers=CLIENT_HEADERS) as resp:
            self.assertEqual(resp.status, 403)

    async def test_medium_threat_passes(self):
        headers = dict(CLIENT_HEADERS, **{'User-Agent': 'nikto/2.5'})

        async with self.client.get('/', headers=headers) as resp:
            self.assertEqual(resp.status, 200)

        self.assertFalse(self.monitor.is_blocked('203.0.113.5'))

    async def test_handler_can_still_read_body(self):
        async with self.client.post('/echo', data=b'name=alice', headers=CLIENT_HEADERS) as resp:
            self.assertEqual(resp.status, 200)
            self.assertEqual(await resp.read(), b'name=alice')

    async def test_local_client_is_whitelisted(self):
        async with self.client.get('/', headers={'User-Agent': 'sqlmap/1.7'}) as resp:
            self.assertEqual(resp.status, 200)

        self.assertEqual(self.redis.calls, [])

    async def test_health(self):
        async with self.client.get('/health') as resp:
            self.assertEqual(resp.status, 200)
            health = await resp.json()

        self.assertTrue(health['storage_available'])
        self.assertIs(self.app[MONITOR_KEY], self.monitor)
