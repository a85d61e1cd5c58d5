#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - Web集成模块
"""

from .app import create_app
from .middleware import build_request_info, security_middleware

__all__ = ['create_app', 'build_request_info', 'security_middleware']
