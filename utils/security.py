#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 安全工具
"""

import ipaddress
from typing import Iterable, Optional


class IPWhitelist:
    """IP白名单

    构建后不可修改。条目可以是单个地址，也可以是CIDR网段。
    """

    __slots__ = ('_entries', '_addresses', '_networks')

    def __init__(self, entries: Iterable[str]):
        """初始化白名单

        Args:
            entries: IP地址或网段字符串

        Raises:
            ValueError: 条目不是合法的IP地址或网段
        """
        addresses = set()
        networks = []
        normalized = set()

        for entry in entries:
            entry = str(entry).strip()
            if not entry:
                continue

            if '/' in entry:
                networks.append(ipaddress.ip_network(entry, strict=False))
            else:
                addresses.add(ipaddress.ip_address(entry))
            normalized.add(entry)

        object.__setattr__(self, '_entries', frozenset(normalized))
        object.__setattr__(self, '_addresses', frozenset(addresses))
        object.__setattr__(self, '_networks', tuple(networks))

    def __setattr__(self, name, value):
        raise AttributeError("IPWhitelist is immutable")

    @property
    def entries(self) -> frozenset:
        return self._entries

    def is_whitelisted(self, ip: Optional[str]) -> bool:
        """检查IP是否在白名单中

        Args:
            ip: IP地址

        Returns:
            是否在白名单中
        """
        if not ip:
            return False

        try:
            ip_obj = ipaddress.ip_address(str(ip).strip())
        except ValueError:
            return False

        if ip_obj in self._addresses:
            return True
        return any(ip_obj in network for network in self._networks)

    def __contains__(self, ip: str) -> bool:
        return self.is_whitelisted(ip)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"IPWhitelist({sorted(self._entries)!r})"
