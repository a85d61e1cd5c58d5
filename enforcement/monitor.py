#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 安全监控入口

Web层每个请求调用一次 analyze_request，每次认证调用一次 track_login_attempt。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from analysis.request_info import RequestInfo
from analysis.threat_detector import ThreatDetector
from enforcement.event_handler import ACTION_BLOCKED, SecurityEventHandler
from enforcement.login_tracker import LoginTracker
from utils.config import SecurityConfig
from utils.logger import SecurityEventLogger
from utils.storage import SecurityStorage, create_redis_client


@dataclass
class ThreatAssessment:
    """单个请求的评估结果"""
    ip_address: Optional[str]
    threats: List[str] = field(default_factory=list)
    severity: Optional[str] = None
    action_taken: Optional[str] = None
    whitelisted: bool = False

    @property
    def blocked(self) -> bool:
        return self.action_taken == ACTION_BLOCKED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ip_address': self.ip_address,
            'threats': list(self.threats),
            'severity': self.severity,
            'action_taken': self.action_taken,
            'whitelisted': self.whitelisted
        }


class SecurityMonitor:
    """组装存储、检测器、事件处理器和登录跟踪器"""

    def __init__(self, config: SecurityConfig, storage: Optional[SecurityStorage] = None,
                 event_logger: Optional[SecurityEventLogger] = None):
        self.config = config
        self.storage = storage or SecurityStorage(config)
        self.event_logger = event_logger or SecurityEventLogger()
        self.logger = logging.getLogger('security.monitor')

        self.detector = ThreatDetector(config, self.storage)
        self.event_handler = SecurityEventHandler(config, self.storage, self.event_logger)
        self.login_tracker = LoginTracker(config, self.storage, self.event_handler)

    @classmethod
    def from_config(cls, config: SecurityConfig,
                    event_logger: Optional[SecurityEventLogger] = None) -> 'SecurityMonitor':
        """使用配置中的redis设置创建监控器"""
        client = create_redis_client(config.redis_settings)
        return cls(config, SecurityStorage(config, client), event_logger)

    def analyze_request(self, request: RequestInfo) -> ThreatAssessment:
        """分析请求，必要时封禁并更新统计

        Returns:
            评估结果；不会抛出异常
        """
        try:
            ip_address = self.detector.extract_client_ip(request)
        except Exception as e:
            self.logger.error(f"解析客户端IP失败: {e}")
            return ThreatAssessment(ip_address=None)

        if self.config.is_whitelisted(ip_address):
            return ThreatAssessment(ip_address=ip_address, whitelisted=True)

        assessment = ThreatAssessment(ip_address=ip_address)
        threats = self.detector.detect_threats(request)

        if threats:
            severity = self.detector.determine_severity(threats)
            assessment.threats = sorted(tag.value for tag in threats)
            assessment.severity = severity.label
            try:
                assessment.action_taken = self.event_handler.handle_threat('suspicious_activity', {
                    'ip_address': ip_address,
                    'threats': assessment.threats,
                    'severity': severity.label,
                    'path': request.path,
                    'method': request.method,
                    'user_agent': request.user_agent,
                    'referer': request.referer
                })
            except Exception as e:
                self.logger.error(f"威胁处理失败 {ip_address}: {e}")

        self.storage.update_statistics(ip_address, request.user_agent, request.path)
        return assessment

    def is_blocked(self, ip_address: Optional[str]) -> bool:
        if not ip_address or self.config.is_whitelisted(ip_address):
            return False
        return self.storage.is_blocked(ip_address)

    def track_login_attempt(self, ip_address: str, email: str, success: bool,
                            user_agent: Optional[str] = None) -> Dict[str, Any]:
        return self.login_tracker.track_login_attempt(ip_address, email, success, user_agent)

    def add_notification_hook(self, hook) -> None:
        self.event_handler.add_notification_hook(hook)

    def health(self) -> Dict[str, Any]:
        """存储存活状态与操作统计"""
        stats = self.storage.get_stats()
        return {
            'storage_available': self.storage.ping(),
            'storage_operations': stats.total_operations,
            'storage_failures': stats.failed_operations,
            'last_storage_error': stats.last_error,
            'events': self.event_logger.get_statistics()
        }
