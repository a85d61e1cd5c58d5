#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 配置管理工具

提供阈值、封禁时长、白名单和存储键空间的加载、验证与查看功能。
配置来源优先级: 内置默认值 < YAML配置文件 < 环境变量
"""

import math
import os
import re
import threading
from dataclasses import dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from utils.security import IPWhitelist


class ConfigError(Exception):
    """配置相关错误基类"""
    pass


class ConfigValidationError(ConfigError):
    """配置验证错误"""
    pass


class ConfigLoadError(ConfigError):
    """配置加载错误"""
    pass


DEFAULT_KEY_PREFIX = 'security'
DEFAULT_WHITELIST_IPS = ('127.0.0.1', '::1')

THRESHOLD_ENV_VARS = {
    'rapid_requests': 'SECURITY_RAPID_REQUESTS_THRESHOLD',
    'failed_logins': 'SECURITY_FAILED_LOGINS_THRESHOLD',
    'unique_user_agents': 'SECURITY_UNIQUE_USER_AGENTS_THRESHOLD',
    'request_size_bytes': 'SECURITY_REQUEST_SIZE_THRESHOLD',
    'response_time_seconds': 'SECURITY_RESPONSE_TIME_THRESHOLD',
}

BLOCK_DURATION_ENV_VARS = {
    'suspicious_ip': 'SECURITY_BLOCK_SUSPICIOUS_IP',
    'brute_force': 'SECURITY_BLOCK_BRUTE_FORCE',
    'sql_injection': 'SECURITY_BLOCK_SQL_INJECTION',
    'path_traversal': 'SECURITY_BLOCK_PATH_TRAVERSAL',
    'critical_threat': 'SECURITY_BLOCK_CRITICAL_THREAT',
    'high_threat': 'SECURITY_BLOCK_HIGH_THREAT',
}

# 存储键类型 -> 键名后缀
REDIS_KEY_KINDS = {
    'request_count': 'request_count',
    'failed_logins': 'failed_logins',
    'login_attempts': 'login_attempts',
    'blocked': 'blocked',
    'stats_requests': 'stats:requests',
    'stats_ip': 'stats:ip',
}


def parse_size(size_str: str) -> int:
    """解析大小字符串

    Args:
        size_str: 大小字符串，如 '10MB', '1GB', '512KB', '2048'

    Returns:
        字节数

    Raises:
        ValueError: 无效的大小格式
    """
    if not isinstance(size_str, str) or not size_str.strip():
        raise ValueError("大小字符串必须是非空字符串")

    size_str = size_str.upper().strip()

    match = re.match(r'^(\d+(?:\.\d+)?)\s*([KMGT]?B?)$', size_str)
    if not match:
        raise ValueError(f"无效的大小格式: {size_str}，支持格式如: 10MB, 1GB, 512KB")

    number_str, unit = match.groups()
    multipliers: Dict[str, int] = {
        'B': 1,
        'KB': 1024,
        'MB': 1024 ** 2,
        'GB': 1024 ** 3,
        'TB': 1024 ** 4,
        'K': 1024,
        'M': 1024 ** 2,
        'G': 1024 ** 3,
        'T': 1024 ** 4,
        '': 1
    }

    return int(float(number_str) * multipliers[unit])


def _coerce_int(name: str, value: Any, allow_size: bool = False) -> int:
    """将配置值转换为整数，字符串来自环境变量"""
    if isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be positive integer, got: {value!r}")

    if isinstance(value, str):
        text = value.strip()
        try:
            if allow_size and not text.isdigit():
                return parse_size(text)
            return int(text)
        except ValueError:
            raise ConfigValidationError(f"{name} must be positive integer, got: {value!r}")

    return value


def _coerce_number(name: str, value: Any) -> Any:
    """将配置值转换为数值"""
    if isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be positive number, got: {value!r}")

    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            raise ConfigValidationError(f"{name} must be positive number, got: {value!r}")

    return value


@dataclass(frozen=True)
class ThresholdSet:
    """异常访问检测阈值"""
    rapid_requests: int = 100
    failed_logins: int = 5
    unique_user_agents: int = 10
    request_size_bytes: int = 10 * 1024 * 1024
    response_time_seconds: float = 30.0

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'ThresholdSet':
        """从配置字典构建并验证阈值

        Args:
            values: 字段名到原始值的映射，缺失的字段使用默认值

        Returns:
            验证后的阈值对象

        Raises:
            ConfigValidationError: 任一字段不是正数
        """
        unknown = set(values) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigValidationError(f"未知的阈值配置项: {sorted(unknown)}")

        kwargs = {}
        for name, raw in values.items():
            if name == 'response_time_seconds':
                kwargs[name] = _coerce_number(name, raw)
            else:
                kwargs[name] = _coerce_int(name, raw, allow_size=(name == 'request_size_bytes'))

        return cls(**kwargs)

    def validate(self) -> 'ThresholdSet':
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == 'response_time_seconds':
                if (isinstance(value, bool) or not isinstance(value, (int, float))
                        or not math.isfinite(value) or value <= 0):
                    raise ConfigValidationError(f"{f.name} must be positive number, got: {value!r}")
            elif isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigValidationError(f"{f.name} must be positive integer, got: {value!r}")
        return self

    def describe(self) -> Dict[str, str]:
        """返回可读的阈值说明"""
        return {
            'rapid_requests': f"{self.rapid_requests} requests/minute",
            'failed_logins': f"{self.failed_logins} attempts",
            'unique_user_agents': f"{self.unique_user_agents} different agents",
            'request_size_bytes': f"{self.request_size_bytes // (1024 * 1024)}MB",
            'response_time_seconds': f"{float(self.response_time_seconds)}s"
        }


@dataclass(frozen=True)
class BlockDurationSet:
    """各类威胁的封禁时长（分钟）"""
    suspicious_ip: int = 60
    brute_force: int = 120
    sql_injection: int = 1440
    path_traversal: int = 720
    critical_threat: int = 1440
    high_threat: int = 120

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> 'BlockDurationSet':
        unknown = set(values) - {f.name for f in fields(cls)}
        if unknown:
            raise ConfigValidationError(f"未知的封禁时长配置项: {sorted(unknown)}")

        kwargs = {name: _coerce_int(name, raw) for name, raw in values.items()}
        return cls(**kwargs)

    def validate(self) -> 'BlockDurationSet':
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigValidationError(f"{f.name} must be positive integer, got: {value!r}")
        return self

    def __getitem__(self, category: str) -> int:
        if category not in BLOCK_DURATION_ENV_VARS:
            raise KeyError(f"Unknown block duration key: {category}")
        return getattr(self, category)

    def describe(self) -> Dict[str, str]:
        return {
            f.name: f"{getattr(self, f.name)} minutes ({getattr(self, f.name) / 60.0} hours)"
            for f in fields(self)
        }


class SecurityConfig:
    """安全配置

    启动时构建一次并注入到存储、检测器、事件处理器和登录跟踪器中。
    各值对象不可变，reload() 仅在新配置全部验证通过后整体替换。
    """

    def __init__(self, env: Optional[Mapping[str, str]] = None,
                 config_path: Optional[str] = None) -> None:
        """初始化安全配置

        Args:
            env: 环境变量映射，默认使用 os.environ
            config_path: YAML配置文件路径，默认读取 SECURITY_CONFIG_FILE

        Raises:
            ConfigLoadError: 配置文件加载失败
            ConfigValidationError: 配置验证失败
        """
        self._env = env if env is not None else os.environ
        self._config_path = config_path or self._env.get('SECURITY_CONFIG_FILE')
        self._lock = threading.Lock()

        self.thresholds: ThresholdSet
        self.block_durations: BlockDurationSet
        self.whitelist: IPWhitelist
        self.key_prefix: str
        self.redis_settings: Dict[str, Any]
        self.logging_settings: Dict[str, Any]

        self._apply(self._build())

    @property
    def config_path(self) -> Optional[str]:
        return self._config_path

    def reload(self) -> 'SecurityConfig':
        """重新读取同一配置来源并重新验证（测试用）

        Raises:
            ConfigError: 新配置无效，此时保留原有配置
        """
        values = self._build()
        with self._lock:
            self._apply(values)
        return self

    def _apply(self, values: Dict[str, Any]) -> None:
        self.thresholds = values['thresholds']
        self.block_durations = values['block_durations']
        self.whitelist = values['whitelist']
        self.key_prefix = values['key_prefix']
        self.redis_settings = values['redis']
        self.logging_settings = values['logging']

    def _build(self) -> Dict[str, Any]:
        file_config = self._load_file() if self._config_path else {}
        security_section = file_config.get('security', {}) or {}
        if not isinstance(security_section, dict):
            raise ConfigLoadError("security配置节必须是字典")

        threshold_values = dict(security_section.get('thresholds', {}) or {})
        for name, env_var in THRESHOLD_ENV_VARS.items():
            if env_var in self._env:
                threshold_values[name] = self._env[env_var]

        duration_values = dict(security_section.get('block_durations', {}) or {})
        for name, env_var in BLOCK_DURATION_ENV_VARS.items():
            if env_var in self._env:
                duration_values[name] = self._env[env_var]

        whitelist_entries: List[str] = list(DEFAULT_WHITELIST_IPS)
        whitelist_entries.extend(security_section.get('whitelist_ips', []) or [])
        env_whitelist = self._env.get('SECURITY_WHITELIST_IPS', '')
        whitelist_entries.extend(ip.strip() for ip in env_whitelist.split(',') if ip.strip())

        key_prefix = self._env.get('REDIS_KEY_PREFIX') or security_section.get('key_prefix') or DEFAULT_KEY_PREFIX
        if not isinstance(key_prefix, str) or not re.match(r'^[A-Za-z0-9_.:-]+$', key_prefix):
            raise ConfigValidationError(f"无效的存储键前缀: {key_prefix!r}")

        redis_settings = dict(file_config.get('redis', {}) or {})
        if self._env.get('REDIS_URL'):
            redis_settings['url'] = self._env['REDIS_URL']

        logging_settings = dict(file_config.get('logging', {}) or {})
        if self._env.get('SECURITY_LOG_LEVEL'):
            logging_settings['level'] = self._env['SECURITY_LOG_LEVEL']

        try:
            whitelist = IPWhitelist(whitelist_entries)
        except ValueError as e:
            raise ConfigValidationError(f"无效的白名单IP: {e}")

        return {
            'thresholds': ThresholdSet.from_mapping(threshold_values),
            'block_durations': BlockDurationSet.from_mapping(duration_values),
            'whitelist': whitelist,
            'key_prefix': key_prefix,
            'redis': redis_settings,
            'logging': logging_settings,
        }

    def _load_file(self) -> Dict[str, Any]:
        """加载YAML配置文件

        Raises:
            ConfigLoadError: 文件不存在、无法读取或格式错误
        """
        path = Path(self._config_path)
        if not path.exists():
            raise ConfigLoadError(f"配置文件不存在: {path}")
        if not path.is_file():
            raise ConfigLoadError(f"路径不是文件: {path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"配置文件格式错误: {e}")
        except OSError as e:
            raise ConfigLoadError(f"加载配置文件失败: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigLoadError("配置文件根节点必须是字典")
        return config

    @property
    def redis_keys(self) -> Dict[str, str]:
        """命名空间化的存储键前缀"""
        return {kind: f"{self.key_prefix}:{suffix}" for kind, suffix in REDIS_KEY_KINDS.items()}

    def key(self, kind: str, *parts: Any) -> str:
        """构建存储键

        Args:
            kind: 键类型，如 'request_count', 'blocked'
            *parts: 追加的键片段

        Returns:
            形如 ``<prefix>:<kind>:<part>...`` 的键
        """
        return ':'.join([self.redis_keys[kind], *(str(part) for part in parts)])

    @property
    def whitelist_ips(self) -> frozenset:
        return self.whitelist.entries

    def is_whitelisted(self, ip: Optional[str]) -> bool:
        return self.whitelist.is_whitelisted(ip)

    def is_valid(self) -> bool:
        try:
            self.thresholds.validate()
            self.block_durations.validate()
            return True
        except ConfigValidationError:
            return False

    def inspect_configuration(self) -> Dict[str, Any]:
        """配置信息可视化（运维面板用）"""
        from utils.logger import EVENT_LOG_LEVELS

        return {
            'thresholds': self.thresholds.describe(),
            'block_durations': self.block_durations.describe(),
            'redis_keys': self.redis_keys,
            'whitelist_ips': sorted(self.whitelist.entries),
            'log_levels': dict(EVENT_LOG_LEVELS),
            'config_file': self._config_path,
        }


def load_config(env: Optional[Mapping[str, str]] = None,
                config_path: Optional[str] = None) -> SecurityConfig:
    """加载并验证安全配置

    Raises:
        ConfigError: 配置无效，应终止进程启动
    """
    return SecurityConfig(env=env, config_path=config_path)


def create_default_config(config_path: str) -> Dict[str, Any]:
    """创建默认配置文件

    Args:
        config_path: 配置文件路径

    Returns:
        写入的配置字典
    """
    default_config = {
        'security': {
            'key_prefix': DEFAULT_KEY_PREFIX,
            'thresholds': {f.name: f.default for f in fields(ThresholdSet)},
            'block_durations': {f.name: f.default for f in fields(BlockDurationSet)},
            'whitelist_ips': [],
        },
        'redis': {
            'host': 'localhost',
            'port': 6379,
            'db': 0,
            'socket_timeout': 1,
            'socket_connect_timeout': 1,
        },
        'logging': {
            'level': 'INFO',
            'file': None,
            'max_size': '10MB',
            'backup_count': 5,
            'console': True,
        },
    }

    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(f"# 生成时间: {datetime.now().isoformat()}\n")
        yaml.dump(default_config, f, default_flow_style=False, allow_unicode=True,
                  indent=2, sort_keys=False)

    return default_config
