#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 威胁标签与严重程度
"""

from enum import Enum, IntEnum
from typing import Iterable, Union


class ThreatTag(str, Enum):
    """请求分析后附加的威胁标签"""
    RAPID_REQUESTS = 'rapid_requests'
    SUSPICIOUS_USER_AGENT = 'suspicious_user_agent'
    PATH_TRAVERSAL = 'path_traversal'
    SQL_INJECTION = 'sql_injection'
    LARGE_REQUEST = 'large_request'

    def __str__(self) -> str:
        return self.value


class Severity(IntEnum):
    """威胁严重程度（有序）"""
    MEDIUM = 1
    HIGH = 2
    CRITICAL = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: Union['Severity', str, int]) -> 'Severity':
        """从枚举、名称或序号解析严重程度

        Raises:
            ValueError: 无法识别的严重程度
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValueError(f"未知的严重程度: {value!r}")
        return cls(value)


CRITICAL_TAGS = frozenset({ThreatTag.SQL_INJECTION, ThreatTag.PATH_TRAVERSAL})


def normalize_tags(tags: Iterable[Union[ThreatTag, str]]) -> frozenset:
    """把字符串标签转换为 ThreatTag，忽略未知标签"""
    normalized = set()
    for tag in tags or ():
        try:
            normalized.add(ThreatTag(getattr(tag, 'value', tag)))
        except ValueError:
            continue
    return frozenset(normalized)


def determine_severity(tags: Iterable[Union[ThreatTag, str]]) -> Severity:
    """根据威胁标签集合确定严重程度

    sql_injection 或 path_traversal 为 critical；
    rapid_requests 且标签多于一个为 high（单独的 rapid_requests 只是 medium）；
    其余情况（包括空集合）为 medium。
    """
    tags = normalize_tags(tags)

    if tags & CRITICAL_TAGS:
        return Severity.CRITICAL
    if ThreatTag.RAPID_REQUESTS in tags and len(tags) > 1:
        return Severity.HIGH
    return Severity.MEDIUM
