#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 共享存储

封装Redis上的计数器、封禁列表和登录失败计数。
所有方法各自隔离失败：后端异常被记录为error并转换为安全默认值
（0、False 或空操作），绝不向请求路径抛出。
"""

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import redis

from utils.config import SecurityConfig

HOURLY_STATS_EXPIRY = 25 * 3600
IP_STATS_EXPIRY = 2 * 24 * 3600
FAILED_LOGIN_EXPIRY = 3600

# 封禁类别是键的一段，不能包含分隔符
BLOCK_REASON_PATTERN = re.compile(r'[A-Za-z0-9_]+')


@dataclass
class StorageStats:
    """存储操作统计信息"""
    total_operations: int = 0
    failed_operations: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[float] = None


def is_valid_block_reason(reason: Any) -> bool:
    return isinstance(reason, str) and bool(BLOCK_REASON_PATTERN.fullmatch(reason))


def create_redis_client(settings: Dict[str, Any]) -> redis.Redis:
    """根据配置创建Redis客户端

    客户端惰性连接，创建时不会访问网络。请求路径上的超时由此处的
    socket_timeout 控制。

    Args:
        settings: redis配置节，支持 url 或 host/port/db/password

    Returns:
        Redis客户端
    """
    options = {
        'socket_timeout': settings.get('socket_timeout', 1),
        'socket_connect_timeout': settings.get('socket_connect_timeout', 1),
        'decode_responses': True,
    }

    if settings.get('url'):
        return redis.Redis.from_url(settings['url'], **options)

    return redis.Redis(
        host=settings.get('host', 'localhost'),
        port=settings.get('port', 6379),
        db=settings.get('db', 0),
        password=settings.get('password'),
        **options
    )


class SecurityStorage:
    """安全状态共享存储"""

    def __init__(self, config: SecurityConfig, client: Optional[Any] = None,
                 logger: Optional[logging.Logger] = None):
        """初始化存储

        Args:
            config: 安全配置，提供键前缀
            client: Redis客户端；为None时视为存储不可用
            logger: 日志记录器
        """
        self.config = config
        self.client = client
        self.logger = logger or logging.getLogger('security.storage')
        self.stats = StorageStats()
        self._stats_lock = threading.Lock()

    def _execute(self, operation: str, default: Any, func: Callable[[Any], Any]) -> Any:
        """执行单个存储操作，失败时返回默认值"""
        if self.client is None:
            self.logger.debug(f"存储不可用，跳过操作: {operation}")
            return default

        with self._stats_lock:
            self.stats.total_operations += 1
        try:
            return func(self.client)
        except Exception as e:
            with self._stats_lock:
                self.stats.failed_operations += 1
                self.stats.last_error = f"{operation}: {e}"
                self.stats.last_error_at = time.time()
            self.logger.error(f"Storage {operation} error: {e}")
            return default

    def increment_counter(self, key: str, expiry_seconds: int = 60) -> int:
        """原子递增计数器

        仅在递增后值为1（窗口内首次写入）时设置过期时间。

        Args:
            key: 计数器键
            expiry_seconds: 窗口长度（秒）

        Returns:
            递增后的值；后端异常时返回0
        """
        def _incr(client):
            count = int(client.incr(key))
            if count == 1:
                client.expire(key, expiry_seconds)
            return count

        return self._execute('increment', 0, _incr)

    def _blocked_prefix(self) -> str:
        return f"{self.config.redis_keys['blocked']}:"

    def _matching_block_keys(self, client, ip_address: str) -> List[str]:
        prefix = self._blocked_prefix()
        keys = []
        for key in client.scan_iter(match=f"{prefix}*:{ip_address}"):
            if isinstance(key, bytes):
                key = key.decode('utf-8')
            _reason, _, key_ip = key[len(prefix):].partition(':')
            if key_ip == ip_address:
                keys.append(key)
        return keys

    def is_blocked(self, ip_address: str) -> bool:
        """检查IP在任一封禁类别下是否存在未过期的封禁记录

        Returns:
            是否被封禁；后端异常时返回False
        """
        def _check(client):
            return any(client.exists(key) for key in self._matching_block_keys(client, ip_address))

        return bool(self._execute('blocked check', False, _check))

    def block_ip(self, ip_address: str, reason: str, duration_minutes: int) -> bool:
        """写入封禁记录，记录自身的过期时间即封禁时长

        Args:
            ip_address: IP地址
            reason: 封禁类别
            duration_minutes: 封禁时长（分钟）

        Returns:
            是否写入成功
        """
        reason = getattr(reason, 'value', reason)
        if not is_valid_block_reason(reason):
            self.logger.error(f"无效的封禁类别: {reason!r}")
            return False

        block_key = self.config.key('blocked', reason, ip_address)
        block_data = self.build_block_data(reason, duration_minutes)

        def _block(client):
            client.setex(block_key, int(duration_minutes) * 60, json.dumps(block_data))
            return True

        return self._execute('block IP', False, _block)

    @staticmethod
    def build_block_data(reason: str, duration_minutes: int) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return {
            'blocked_at': now.isoformat(),
            'reason': reason,
            'duration_minutes': duration_minutes,
            'blocked_until': (now + timedelta(minutes=duration_minutes)).isoformat()
        }

    def get_block_records(self, ip_address: str) -> List[Dict[str, Any]]:
        """获取IP当前所有封禁记录及剩余秒数（运维用）"""
        def _records(client):
            records = []
            for key in self._matching_block_keys(client, ip_address):
                raw = client.get(key)
                if raw is None:
                    continue
                record = json.loads(raw)
                record['ttl_seconds'] = client.ttl(key)
                records.append(record)
            return records

        return self._execute('block records', [], _records)

    def unblock_ip(self, ip_address: str, reason: Optional[str] = None) -> int:
        """删除封禁记录

        Args:
            ip_address: IP地址
            reason: 仅删除该类别；为None时删除所有类别

        Returns:
            删除的记录数
        """
        def _unblock(client):
            if reason is not None:
                return int(client.delete(self.config.key('blocked', reason, ip_address)))
            keys = self._matching_block_keys(client, ip_address)
            return int(client.delete(*keys)) if keys else 0

        return self._execute('unblock IP', 0, _unblock)

    def delete_key(self, key: str) -> bool:
        """删除键，键不存在不视为错误

        Returns:
            是否实际删除了键
        """
        return self._execute('delete', False, lambda client: int(client.delete(key)) > 0)

    def _failed_login_key(self, ip_address: str, email: str) -> str:
        return self.config.key('failed_logins', ip_address, email)

    def get_failed_login_count(self, ip_address: str, email: str) -> int:
        key = self._failed_login_key(ip_address, email)
        return self._execute('failed login count', 0, lambda client: int(client.get(key) or 0))

    def increment_failed_logins(self, ip_address: str, email: str,
                                expiry_seconds: int = FAILED_LOGIN_EXPIRY) -> int:
        return self.increment_counter(self._failed_login_key(ip_address, email), expiry_seconds)

    def reset_failed_logins(self, ip_address: str, email: str) -> bool:
        """重置登录失败计数（幂等）"""
        return self.delete_key(self._failed_login_key(ip_address, email))

    def update_statistics(self, ip_address: str, user_agent: Optional[str], path: Optional[str]) -> None:
        """更新报表用的聚合计数（按小时全局请求数、按天单IP请求数）

        失败完全被吞掉，不影响调用方。
        """
        try:
            now = datetime.now()
            self.increment_counter(self.config.key('stats_requests', now.strftime('%Y%m%d%H')),
                                   HOURLY_STATS_EXPIRY)
            self.increment_counter(self.config.key('stats_ip', ip_address, now.strftime('%Y%m%d')),
                                   IP_STATS_EXPIRY)
        except Exception as e:
            self.logger.debug(f"统计更新失败: {e}")

    def get_request_statistics(self, ip_address: Optional[str] = None) -> Dict[str, int]:
        """读取当前小时的全局请求数及当天的单IP请求数"""
        now = datetime.now()

        def _read(client):
            stats = {'requests_this_hour': int(client.get(
                self.config.key('stats_requests', now.strftime('%Y%m%d%H'))) or 0)}
            if ip_address:
                stats['ip_requests_today'] = int(client.get(
                    self.config.key('stats_ip', ip_address, now.strftime('%Y%m%d'))) or 0)
            return stats

        return self._execute('statistics read', {}, _read)

    def ping(self) -> bool:
        """存储存活探测"""
        return bool(self._execute('ping', False, lambda client: client.ping()))

    def get_stats(self) -> StorageStats:
        """返回统计信息快照"""
        with self._stats_lock:
            return replace(self.stats)
