#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 分析模块

该模块包含请求描述、威胁标签和请求威胁检测功能
"""

from .request_info import RequestInfo
from .threat_detector import ThreatDetector
from .threats import Severity, ThreatTag, determine_severity

__all__ = [
    'RequestInfo',
    'ThreatDetector',
    'Severity',
    'ThreatTag',
    'determine_severity',
]

__version__ = '1.0.0'
