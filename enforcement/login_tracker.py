#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 登录尝试跟踪
"""

import logging
from typing import Any, Dict, Optional

from enforcement.event_handler import SecurityEventHandler
from utils.config import SecurityConfig
from utils.logger import SecurityEventLogger
from utils.storage import SecurityStorage


class LoginTracker:
    """登录尝试跟踪器

    按 (ip, email) 累计失败次数，达到阈值时以 brute_force 事件交给
    事件处理器封禁IP。成功登录只重置失败计数，不解除已有的IP封禁。
    """

    def __init__(self, config: SecurityConfig, storage: SecurityStorage,
                 event_handler: Optional[SecurityEventHandler] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.storage = storage
        self.event_handler = event_handler or SecurityEventHandler(config, storage)
        self.logger = logger or logging.getLogger('security.login')

    def track_login_attempt(self, ip_address: str, email: str, success: bool,
                            user_agent: Optional[str] = None) -> Dict[str, Any]:
        """记录一次登录尝试

        Args:
            ip_address: 客户端IP
            email: 登录标识
            success: 是否登录成功
            user_agent: User-Agent

        Returns:
            事件上下文（失败时包含 failed_count）
        """
        context = self._build_login_context(ip_address, email, user_agent)

        if self.config.is_whitelisted(ip_address):
            # 白名单IP不读写任何计数
            context['whitelisted'] = True
            self.logger.debug(f"白名单IP登录尝试: {ip_address}")
            return context

        if success:
            self._handle_successful_login(context)
        else:
            self._handle_failed_login(context)

        return context

    def is_login_blocked(self, ip_address: str) -> bool:
        """认证前预检查IP是否被封禁"""
        if self.config.is_whitelisted(ip_address):
            return False
        return self.storage.is_blocked(ip_address)

    def get_failed_count(self, ip_address: str, email: str) -> int:
        if self.config.is_whitelisted(ip_address):
            return 0
        return self.storage.get_failed_login_count(ip_address, email)

    def reset_failures(self, ip_address: str, email: str) -> bool:
        if self.config.is_whitelisted(ip_address):
            return False
        return self.storage.reset_failed_logins(ip_address, email)

    def _handle_successful_login(self, context: Dict[str, Any]) -> None:
        self.storage.reset_failed_logins(context['ip_address'], context['email'])
        self.event_handler.handle_login_threat('successful_login', context)

    def _handle_failed_login(self, context: Dict[str, Any]) -> None:
        failed_count = self.storage.increment_failed_logins(context['ip_address'], context['email'])
        context['failed_count'] = failed_count

        if failed_count >= self.config.thresholds.failed_logins:
            # 这里的 brute_force 事件触发实际的IP封禁
            self.event_handler.handle_login_threat('brute_force', context)
        else:
            self.event_handler.handle_login_threat('failed_login', context)

    @staticmethod
    def _build_login_context(ip_address: str, email: str, user_agent: Optional[str]) -> Dict[str, Any]:
        return {
            'ip_address': ip_address,
            'email': email,
            'user_agent': user_agent,
            'timestamp': SecurityEventLogger.timestamp(),
            'source': 'login_tracker'
        }
