#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
测试用内存Redis替身

只实现存储层用到的命令，过期时间基于可手动推进的时钟。
"""

import fnmatch
from typing import Dict, Optional

from redis.exceptions import ConnectionError as RedisConnectionError


class FakeRedis:
    """带可控时钟的内存Redis"""

    def __init__(self):
        self.now = 0.0
        self.data: Dict[str, str] = {}
        self.expires_at: Dict[str, float] = {}
        self.calls = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _purge(self, key: str) -> None:
        deadline = self.expires_at.get(key)
        if deadline is not None and self.now >= deadline:
            self.data.pop(key, None)
            self.expires_at.pop(key, None)

    def _purge_all(self) -> None:
        for key in list(self.data):
            self._purge(key)

    def incr(self, key: str) -> int:
        self.calls.append(('incr', key))
        self._purge(key)
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    def expire(self, key: str, seconds: int) -> bool:
        self.calls.append(('expire', key, seconds))
        self._purge(key)
        if key not in self.data:
            return False
        self.expires_at[key] = self.now + seconds
        return True

    def get(self, key: str) -> Optional[str]:
        self.calls.append(('get', key))
        self._purge(key)
        return self.data.get(key)

    def setex(self, key: str, seconds: int, value: str) -> bool:
        self.calls.append(('setex', key, seconds))
        self.data[key] = value
        self.expires_at[key] = self.now + seconds
        return True

    def delete(self, *keys: str) -> int:
        self.calls.append(('delete',) + keys)
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                del self.data[key]
                self.expires_at.pop(key, None)
                removed += 1
        return removed

    def exists(self, *keys: str) -> int:
        self.calls.append(('exists',) + keys)
        count = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                count += 1
        return count

    def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.data:
            return -2
        if key not in self.expires_at:
            return -1
        return int(self.expires_at[key] - self.now)

    def scan_iter(self, match: Optional[str] = None):
        self.calls.append(('scan_iter', match))
        self._purge_all()
        for key in list(self.data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def ping(self) -> bool:
        return True


class BrokenRedis:
    """所有命令都抛出连接错误的Redis"""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            self.calls.append(name)
            raise RedisConnectionError(f"connection refused during {name}")
        return _fail
