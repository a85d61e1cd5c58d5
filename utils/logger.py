#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 日志记录工具

提供日志记录器配置和安全事件的结构化日志记录功能。
每条安全事件是一条扁平的JSON记录，供外部日志聚合系统消费。
"""

import json
import logging
import logging.handlers
import os
import threading
from collections import Counter
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from utils.config import parse_size


class LoggerConfigError(Exception):
    """日志配置错误

    当日志记录器配置失败时抛出此异常。
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.original_error = original_error
        self.message = message


# 事件类型 -> 日志级别（静态映射，未列出的事件为 info）
EVENT_LOG_LEVELS: Dict[str, str] = {
    'critical_threat_blocked': 'fatal',
    'critical_threat': 'fatal',
    'brute_force_blocked': 'error',
    'brute_force_detected': 'error',
    'high_threat_blocked': 'error',
    'failed_login': 'warn',
    'suspicious_activity': 'warn',
    'medium_threat': 'warn',
}

LEVEL_NAMES: Dict[str, int] = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'fatal': logging.CRITICAL,
    'critical': logging.CRITICAL,
}


def level_for_event(event_type: str) -> str:
    """获取事件类型对应的日志级别名称"""
    return EVENT_LOG_LEVELS.get(event_type, 'info')


def setup_logger(
    name: str,
    level: str = 'INFO',
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console_output: bool = True
) -> logging.Logger:
    """设置日志记录器

    Args:
        name: 日志记录器名称
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: 日志文件路径
        max_bytes: 单个日志文件最大字节数
        backup_count: 备份文件数量
        console_output: 是否输出到控制台

    Returns:
        配置好的日志记录器

    Raises:
        LoggerConfigError: 日志配置错误
    """
    if not name or not isinstance(name, str):
        raise LoggerConfigError("日志记录器名称必须是非空字符串")

    if not isinstance(level, str) or level.upper() not in {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}:
        raise LoggerConfigError(f"无效的日志级别: {level}")

    if not isinstance(max_bytes, int) or max_bytes <= 0:
        raise LoggerConfigError("日志文件最大字节数必须是正整数")

    if not isinstance(backup_count, int) or backup_count < 0:
        raise LoggerConfigError("备份文件数量必须是非负整数")

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # 避免重复添加处理器
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = Path(log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)

            if not os.access(log_dir, os.W_OK):
                raise LoggerConfigError(f"没有写入权限: {log_dir}")

            # 使用RotatingFileHandler进行日志轮转
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        except LoggerConfigError:
            raise
        except Exception as e:
            raise LoggerConfigError(f"无法创建文件日志处理器: {e}", e)

    return logger


def setup_logger_from_config(name: str, logging_config: Dict[str, Any]) -> logging.Logger:
    """从配置字典设置日志记录器

    Args:
        name: 日志记录器名称
        logging_config: logging配置节，可选键:
            - level: 日志级别 (默认: 'INFO')
            - file: 日志文件路径
            - max_size: 最大文件大小 (默认: '10MB')
            - backup_count: 备份文件数量 (默认: 5)
            - console: 是否输出到控制台 (默认: True)

    Returns:
        配置好的日志记录器

    Raises:
        LoggerConfigError: 配置错误
    """
    if not isinstance(logging_config, dict):
        raise LoggerConfigError("logging配置必须是字典类型")

    try:
        max_bytes = parse_size(str(logging_config.get('max_size', '10MB')))
    except ValueError as e:
        raise LoggerConfigError(f"解析最大文件大小失败: {e}", e)

    console_output = logging_config.get('console', True)
    if not isinstance(console_output, bool):
        raise LoggerConfigError("控制台输出标志必须是布尔值")

    return setup_logger(
        name=name,
        level=str(logging_config.get('level', 'INFO')),
        log_file=logging_config.get('file'),
        max_bytes=max_bytes,
        backup_count=logging_config.get('backup_count', 5),
        console_output=console_output
    )


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(str(item.value if isinstance(item, Enum) else item) for item in obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


class SecurityEventLogger:
    """安全事件结构化日志记录器

    每次重要决策输出一条JSON记录:
    ``{"event": "security_<type>", "timestamp": ..., "ip_address": ..., ...}``。
    记录失败不会影响调用方。
    """

    SENSITIVE_KEYS = frozenset({
        'password', 'passwd', 'pwd',
        'token', 'access_token', 'refresh_token',
        'secret', 'api_secret', 'client_secret',
        'api_key', 'private_key',
        'authorization', 'credential',
        'cookie', 'csrf'
    })
    MAX_STRING_LENGTH = 1000

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger('security.events')
        self._event_counts: Counter = Counter()
        self._counts_lock = threading.Lock()

    @staticmethod
    def timestamp() -> str:
        return datetime.now(timezone.utc).isoformat()

    def build_record(self, event: str, details: Dict[str, Any]) -> Dict[str, Any]:
        """构建扁平事件记录

        Args:
            event: 记录的 event 字段
            details: 决策相关字段

        Returns:
            清理后的记录字典
        """
        record = {'event': event, 'timestamp': self.timestamp()}
        record.update(self._clean_log_data(details))
        return record

    def log_event(self, event_type: str, details: Dict[str, Any],
                  level: Optional[str] = None) -> Dict[str, Any]:
        """记录安全事件

        Args:
            event_type: 事件类型，如 'critical_threat_blocked'
            details: 事件上下文
            level: 覆盖静态映射的日志级别名称

        Returns:
            已记录的事件字典
        """
        record = self.build_record(f"security_{event_type}", details)
        self.emit(level or level_for_event(event_type), record)
        with self._counts_lock:
            self._event_counts[event_type] += 1
        return record

    def emit(self, level: str, record: Dict[str, Any]) -> None:
        """按级别输出记录"""
        try:
            message = json.dumps(record, ensure_ascii=False, default=_json_default)
            self.logger.log(LEVEL_NAMES.get(level, logging.INFO), message)
        except Exception as e:
            # 确保日志记录错误不会影响请求处理
            try:
                self.logger.error(f"记录安全事件失败: {e}, 事件: {record.get('event')}")
            except Exception:
                pass

    def _clean_log_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """清理日志数据，移除敏感信息并截断过长字符串"""
        cleaned: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            key = str(key)
            if key.lower() in self.SENSITIVE_KEYS:
                cleaned[key] = '[REDACTED]'
            elif isinstance(value, str) and len(value) > self.MAX_STRING_LENGTH:
                cleaned[key] = value[:self.MAX_STRING_LENGTH] + '[TRUNCATED]'
            else:
                cleaned[key] = value
        return cleaned

    def get_statistics(self) -> Dict[str, int]:
        with self._counts_lock:
            return dict(self._event_counts)
