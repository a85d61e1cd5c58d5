#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 处置模块

提供安全事件处理、登录尝试跟踪和安全监控入口。
"""

from .event_handler import SecurityEventHandler
from .login_tracker import LoginTracker
from .monitor import SecurityMonitor, ThreatAssessment

__all__ = [
    'SecurityEventHandler',
    'LoginTracker',
    'SecurityMonitor',
    'ThreatAssessment',
]

__version__ = '1.0.0'
