#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 安全事件处理器

把严重程度或登录事件映射为处置动作（封禁、记录、通知）。
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from analysis.threats import Severity, ThreatTag, determine_severity, normalize_tags
from utils.config import SecurityConfig
from utils.logger import SecurityEventLogger
from utils.storage import SecurityStorage

NotificationHook = Callable[[str, Dict[str, Any]], None]

ACTION_BLOCKED = 'blocked'
ACTION_BLOCK_FAILED = 'block_failed'
ACTION_LOGGED = 'logged'
ACTION_RESET = 'reset'
ACTION_WHITELISTED = 'whitelisted'


class SecurityEventHandler:
    """安全事件处理器

    handle_threat 按严重程度分派:
      - critical: 按威胁类别选择封禁时长并封禁，fatal级日志，通知
      - high: 封禁 high_threat 时长，error级日志，通知
      - medium: 不封禁，warn级日志，通知（仅供参考）

    handle_login_threat 按登录事件类型分派 brute_force / successful_login / failed_login。
    """

    def __init__(self, config: SecurityConfig, storage: SecurityStorage,
                 event_logger: Optional[SecurityEventLogger] = None,
                 notification_hooks: Optional[List[NotificationHook]] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config
        self.storage = storage
        self.event_logger = event_logger or SecurityEventLogger()
        self.notification_hooks: List[NotificationHook] = list(notification_hooks or [])
        self.logger = logger or logging.getLogger('security.handler')

    def add_notification_hook(self, hook: NotificationHook) -> None:
        """注册外部通知分发器（寻呼、聊天、邮件等）

        钩子在请求线程中同步调用，实现方应只做入队等非阻塞操作。
        """
        self.notification_hooks.append(hook)

    # ------------------------------------------------------------------
    # 请求威胁
    # ------------------------------------------------------------------

    def handle_threat(self, threat_type: str, context: Dict[str, Any]) -> str:
        """处理请求威胁

        Args:
            threat_type: 威胁事件类型，仅记录在上下文中
            context: 事件上下文，包含 ip_address、threats，可选 severity

        Returns:
            采取的动作
        """
        context = self._normalize_context(context)
        context.setdefault('threat_type', threat_type)
        threats = normalize_tags(context.get('threats') or [])
        context['threats'] = sorted(tag.value for tag in threats)

        try:
            if context.get('severity') is not None:
                severity = Severity.parse(context['severity'])
            else:
                severity = determine_severity(threats)
        except ValueError:
            self.event_logger.log_event('unknown_threat', context)
            return ACTION_LOGGED

        context['severity'] = severity.label

        if severity is Severity.CRITICAL:
            return self._handle_critical_threat(context, threats)
        if severity is Severity.HIGH:
            return self._handle_high_threat(context)
        return self._handle_medium_threat(context)

    def _handle_critical_threat(self, context: Dict[str, Any], threats: frozenset) -> str:
        category = self.block_category(threats)
        duration = self.config.block_durations[category]

        action = self._block(context['ip_address'], category, duration)
        self.event_logger.log_event('critical_threat_blocked', {
            **context,
            'action_taken': action,
            'block_reason': category,
            'duration_minutes': duration
        })

        self.notify_security_team('critical_threat', context)
        return action

    def _handle_high_threat(self, context: Dict[str, Any]) -> str:
        duration = self.config.block_durations.high_threat

        action = self._block(context['ip_address'], 'high_threat', duration)
        self.event_logger.log_event('high_threat_blocked', {
            **context,
            'action_taken': action,
            'block_reason': 'high_threat',
            'duration_minutes': duration
        })

        self.notify_security_team('high_threat', context)
        return action

    def _handle_medium_threat(self, context: Dict[str, Any]) -> str:
        # 中等威胁只监控，不封禁
        self.event_logger.log_event('suspicious_activity', {**context, 'action_taken': ACTION_LOGGED})
        self.notify_security_team('medium_threat', context)
        return ACTION_LOGGED

    @staticmethod
    def block_category(threats) -> str:
        """选择critical威胁的封禁类别，类别名同时决定封禁时长

        封禁记录写在该类别下（sql_injection / path_traversal），不统一写在
        critical_threat 下；is_blocked 检查所有类别。
        """
        threats = normalize_tags(threats)
        if ThreatTag.SQL_INJECTION in threats:
            return 'sql_injection'
        if ThreatTag.PATH_TRAVERSAL in threats:
            return 'path_traversal'
        return 'critical_threat'

    # ------------------------------------------------------------------
    # 登录事件
    # ------------------------------------------------------------------

    def handle_login_threat(self, threat_type: str, context: Dict[str, Any]) -> str:
        """处理登录相关事件

        Args:
            threat_type: brute_force / successful_login / failed_login
            context: 包含 ip_address、email，failed_login 时可含 failed_count

        Returns:
            采取的动作
        """
        context = self._normalize_context(context)
        threat_type = getattr(threat_type, 'value', threat_type)

        if threat_type == 'brute_force':
            return self._handle_brute_force_attack(context)
        if threat_type == 'successful_login':
            return self._handle_successful_login(context)
        if threat_type == 'failed_login':
            return self._handle_failed_login(context)

        self.event_logger.log_event('unknown_login_threat', {**context, 'threat_type': threat_type})
        return ACTION_LOGGED

    def _handle_brute_force_attack(self, context: Dict[str, Any]) -> str:
        duration = self.config.block_durations.brute_force

        action = self._block(context['ip_address'], 'brute_force', duration)
        self.event_logger.log_event('brute_force_blocked', {
            **context,
            'action_taken': action,
            'duration_minutes': duration
        })

        self.notify_security_team('brute_force_attack', context)
        return action

    def _handle_successful_login(self, context: Dict[str, Any]) -> str:
        ip_address = context['ip_address']
        if not self.config.is_whitelisted(ip_address):
            self.storage.reset_failed_logins(ip_address, context.get('email'))

        self.event_logger.log_event('successful_login', context)
        return ACTION_RESET

    def _handle_failed_login(self, context: Dict[str, Any]) -> str:
        self.event_logger.log_event('failed_login', context)

        # 失败次数达到阈值时额外通知；封禁由调用方发出 brute_force 触发
        failed_count = context.get('failed_count') or 0
        if failed_count >= self.config.thresholds.failed_logins:
            self.notify_security_team('login_threshold_exceeded', context)

        return ACTION_LOGGED

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------

    def notify_security_team(self, notification_type: str, details: Dict[str, Any]) -> None:
        """向安全团队发送通知

        构建结构化负载并写入日志；外部寻呼、聊天或邮件集成通过通知钩子接入。
        不重试，不抛出异常。
        """
        try:
            payload = self.event_logger.build_record('security_notification', {
                'notification_type': notification_type,
                **details
            })
            self.event_logger.emit('warn', payload)
        except Exception as e:
            self.logger.error(f"构建安全通知失败: {e}")
            return

        for hook in self.notification_hooks:
            try:
                hook(notification_type, payload)
            except Exception as e:
                self.logger.error(f"通知钩子执行失败 {notification_type}: {e}")

    # ------------------------------------------------------------------

    def _block(self, ip_address: Optional[str], reason: str, duration_minutes: int) -> str:
        if not ip_address:
            self.logger.warning(f"缺少IP地址，无法封禁: {reason}")
            return ACTION_BLOCK_FAILED

        if self.config.is_whitelisted(ip_address):
            self.logger.info(f"白名单IP不封禁: {ip_address} ({reason})")
            return ACTION_WHITELISTED

        if self.storage.block_ip(ip_address, reason, duration_minutes):
            return ACTION_BLOCKED
        return ACTION_BLOCK_FAILED

    @staticmethod
    def _normalize_context(context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        context = dict(context or {})
        if 'ip_address' not in context and 'ip' in context:
            context['ip_address'] = context.pop('ip')
        context.setdefault('ip_address', None)
        return context
