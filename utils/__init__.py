#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 工具模块

提供配置、日志、白名单和共享存储。
"""

from .config import (
    ConfigError,
    ConfigLoadError,
    ConfigValidationError,
    SecurityConfig,
    load_config,
)
from .logger import SecurityEventLogger, setup_logger, setup_logger_from_config
from .security import IPWhitelist
from .storage import SecurityStorage, create_redis_client

__all__ = [
    'ConfigError',
    'ConfigLoadError',
    'ConfigValidationError',
    'SecurityConfig',
    'load_config',
    'SecurityEventLogger',
    'setup_logger',
    'setup_logger_from_config',
    'IPWhitelist',
    'SecurityStorage',
    'create_redis_client',
]

__version__ = "1.0.0"
