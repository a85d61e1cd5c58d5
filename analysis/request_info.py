#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 请求信息

与Web框架无关的入站请求描述，由调用方的Web层构建。
"""

from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Mapping, Optional


@dataclass
class RequestInfo:
    """单个入站请求

    Attributes:
        remote_addr: 传输层对端地址
        path: 请求路径
        query_string: 原始查询字符串
        method: HTTP方法
        headers: 请求头，查找时不区分大小写
        body: 可读取的请求体流
        content_length: 声明的请求体长度
    """
    remote_addr: Optional[str]
    path: str = '/'
    query_string: str = ''
    method: str = 'GET'
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[BinaryIO] = None
    content_length: Optional[int] = None

    def __post_init__(self):
        self.headers = {str(k).lower(): v for k, v in (self.headers or {}).items()}
        if self.content_length is not None:
            try:
                self.content_length = int(self.content_length)
            except (TypeError, ValueError):
                self.content_length = None

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    @property
    def user_agent(self) -> Optional[str]:
        return self.header('user-agent')

    @property
    def referer(self) -> Optional[str]:
        return self.header('referer')

    @classmethod
    def from_wsgi_environ(cls, environ: Dict[str, Any]) -> 'RequestInfo':
        """从WSGI environ构建请求信息

        Args:
            environ: WSGI环境字典

        Returns:
            请求信息
        """
        headers = {}
        for key, value in environ.items():
            if key.startswith('HTTP_'):
                headers[key[5:].replace('_', '-').lower()] = value

        if environ.get('CONTENT_TYPE'):
            headers['content-type'] = environ['CONTENT_TYPE']

        return cls(
            remote_addr=environ.get('REMOTE_ADDR'),
            path=environ.get('PATH_INFO') or '/',
            query_string=environ.get('QUERY_STRING', ''),
            method=environ.get('REQUEST_METHOD', 'GET'),
            headers=headers,
            body=environ.get('wsgi.input'),
            content_length=environ.get('CONTENT_LENGTH') or None
        )
