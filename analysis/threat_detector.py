#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 请求威胁检测器

对单个请求并行评估多个独立信号，返回威胁标签集合。
"""

import logging
import re
from typing import Callable, List, Optional, Set
from urllib.parse import unquote_plus

from analysis.request_info import RequestInfo
from analysis.threats import Severity, ThreatTag, determine_severity
from utils.config import SecurityConfig
from utils.storage import SecurityStorage

MAX_BODY_INSPECTION_BYTES = 1024 * 1024
RATE_WINDOW_SECONDS = 60


def _compile(patterns: List[str], flags: int = re.IGNORECASE) -> tuple:
    return tuple(re.compile(pattern, flags) for pattern in patterns)


# 已知攻击工具、扫描器和内联脚本的User-Agent特征
SUSPICIOUS_USER_AGENTS = _compile([
    r'sqlmap', r'nikto', r'nmap', r'masscan',
    r'burpsuite', r'owasp', r'w3af',
    r'bot', r'crawler', r'scanner',
    r'<script>', r"'\s*OR\s*1=1",
])

# SQL注入启发式规则
SQL_INJECTION_PATTERNS = _compile([
    r'(\s|^)(select|insert|update|delete|drop|create|alter)\s',
    r'(\s|^)(union|where|having|order\s+by)\s',
    r'(\s|^)(and|or)\s+1\s*=\s*1',
    r"'\s*or\s*'.*'\s*=\s*'",
    r'"\s*or\s*"\s*=\s*"',
    r'-{2,}',
    r'/\*.*\*/',
], re.IGNORECASE | re.MULTILINE)

# 路径穿越规则
PATH_TRAVERSAL_PATTERNS = _compile([
    r'\.\.[/\\]',
    r'%2e%2e(%2f|%5c|/|\\)',
    r'\.\.(%2f|%5c)',
    r'/(etc|proc|sys|var)/',
    r'[/\\](windows|winnt)[/\\]',
    r'\.(conf|passwd|shadow|key|pem)$',
])


class ThreatDetector:
    """请求威胁检测器

    除 rapid_requests 使用共享存储中的滚动计数器外不保存任何状态。
    白名单IP直接返回空集合，不访问存储。
    """

    def __init__(self, config: SecurityConfig, storage: SecurityStorage,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.storage = storage
        self.logger = logger or logging.getLogger('security.detector')

    def detect_threats(self, request: RequestInfo) -> Set[ThreatTag]:
        """检测请求中的威胁

        所有检查都会执行，互不短路；任何单项检查的异常只会让该项失效。

        Args:
            request: 请求信息

        Returns:
            威胁标签集合（可能为空）
        """
        try:
            client_ip = self.extract_client_ip(request)
        except Exception as e:
            self.logger.error(f"解析客户端IP失败: {e}")
            return set()

        if self.config.is_whitelisted(client_ip):
            return set()

        checks = (
            (ThreatTag.RAPID_REQUESTS, lambda: self._rapid_requests(client_ip)),
            (ThreatTag.SUSPICIOUS_USER_AGENT, lambda: self._suspicious_user_agent(request.user_agent)),
            (ThreatTag.PATH_TRAVERSAL, lambda: self._path_traversal(request.path)),
            (ThreatTag.SQL_INJECTION, lambda: self._sql_injection(request)),
            (ThreatTag.LARGE_REQUEST, lambda: self._large_request(request)),
        )

        threats = set()
        for tag, check in checks:
            if self._run_check(tag, check):
                threats.add(tag)

        return threats

    def determine_severity(self, threats) -> Severity:
        try:
            return determine_severity(threats)
        except Exception as e:
            self.logger.error(f"严重程度判定失败: {e}")
            return Severity.MEDIUM

    def extract_client_ip(self, request: RequestInfo) -> Optional[str]:
        """解析客户端IP

        优先级: X-Forwarded-For 第一项 > X-Real-IP > 传输层对端地址
        """
        forwarded_for = request.header('x-forwarded-for')
        if forwarded_for:
            first = forwarded_for.split(',')[0].strip()
            if first:
                return first

        real_ip = request.header('x-real-ip')
        if real_ip and real_ip.strip():
            return real_ip.strip()

        return request.remote_addr

    def is_whitelisted(self, ip: Optional[str]) -> bool:
        return self.config.is_whitelisted(ip)

    def _run_check(self, tag: ThreatTag, check: Callable[[], bool]) -> bool:
        try:
            return bool(check())
        except Exception as e:
            self.logger.error(f"威胁检查失败 {tag.value}: {e}")
            return False

    def _rapid_requests(self, client_ip: Optional[str]) -> bool:
        count = self.storage.increment_counter(
            self.config.key('request_count', client_ip),
            RATE_WINDOW_SECONDS
        )
        return count > self.config.thresholds.rapid_requests

    def _suspicious_user_agent(self, user_agent: Optional[str]) -> bool:
        if not user_agent or not user_agent.strip():
            return True
        return any(pattern.search(user_agent) for pattern in SUSPICIOUS_USER_AGENTS)

    def _path_traversal(self, path: Optional[str]) -> bool:
        if not path:
            return False
        return any(pattern.search(path) for pattern in PATH_TRAVERSAL_PATTERNS)

    def _sql_injection(self, request: RequestInfo) -> bool:
        content = self.build_inspection_string(request)
        return any(pattern.search(content) for pattern in SQL_INJECTION_PATTERNS)

    def _large_request(self, request: RequestInfo) -> bool:
        if request.content_length is None:
            return False
        return request.content_length > self.config.thresholds.request_size_bytes

    def build_inspection_string(self, request: RequestInfo) -> str:
        """构建SQL注入检查内容: 查询字符串 + 请求体 + 路径"""
        parts = []

        query_string = request.query_string or ''
        if query_string:
            parts.append(query_string)
            decoded = unquote_plus(query_string)
            if decoded != query_string:
                parts.append(decoded)

        body = self.read_body(request)
        if body:
            parts.append(body)

        if request.path:
            parts.append(request.path)

        return ' '.join(parts)

    def read_body(self, request: RequestInfo) -> Optional[str]:
        """读取最多1MB请求体用于检查

        声明长度超过1MB时完全跳过。读取后总是恢复流位置；读取失败
        记录warning并视为没有请求体。
        """
        length = request.content_length
        if not length or length <= 0 or length > MAX_BODY_INSPECTION_BYTES:
            return None

        stream = request.body
        if stream is None:
            return None

        position = None
        try:
            if hasattr(stream, 'seekable') and stream.seekable():
                position = stream.tell()
            data = stream.read(MAX_BODY_INSPECTION_BYTES)
        except Exception as e:
            self.logger.warning(f"Failed to read request body: {e}")
            return None
        finally:
            self._restore_position(stream, position)

        if isinstance(data, bytes):
            return data.decode('utf-8', errors='replace')
        return data

    def _restore_position(self, stream, position: Optional[int]) -> None:
        try:
            if position is not None:
                stream.seek(position)
            elif hasattr(stream, 'rewind'):
                stream.rewind()
        except Exception as e:
            self.logger.warning(f"Failed to rewind request body: {e}")
