#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
威胁检测引擎 - 运维命令行

查看和验证配置、探测存储、查询或管理IP封禁，以及启动受保护的示例服务。
"""

import argparse
import json
import sys
from typing import List, Optional

from utils.config import ConfigError, SecurityConfig, create_default_config
from utils.logger import LoggerConfigError, setup_logger_from_config
from utils.storage import is_valid_block_reason


def _print_json(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _build_monitor(config: SecurityConfig):
    from enforcement.monitor import SecurityMonitor
    return SecurityMonitor.from_config(config)


def cmd_show_config(config: SecurityConfig, args: argparse.Namespace) -> int:
    _print_json(config.inspect_configuration())
    return 0


def cmd_check_config(config: SecurityConfig, args: argparse.Namespace) -> int:
    print("✅ 配置有效" if config.is_valid() else "❌ 配置无效")
    return 0 if config.is_valid() else 1


def cmd_ping(config: SecurityConfig, args: argparse.Namespace) -> int:
    monitor = _build_monitor(config)
    if monitor.storage.ping():
        print("✅ 存储可用")
        return 0
    print("❌ 存储不可用")
    return 1


def cmd_status(config: SecurityConfig, args: argparse.Namespace) -> int:
    monitor = _build_monitor(config)
    _print_json({
        'ip_address': args.ip,
        'whitelisted': config.is_whitelisted(args.ip),
        'blocked': monitor.is_blocked(args.ip),
        'block_records': monitor.storage.get_block_records(args.ip),
        'statistics': monitor.storage.get_request_statistics(args.ip)
    })
    return 0


def cmd_block(config: SecurityConfig, args: argparse.Namespace) -> int:
    if args.minutes is not None and args.minutes <= 0:
        print("❌ 封禁时长必须是正整数")
        return 1

    if not is_valid_block_reason(args.reason):
        print(f"❌ 封禁类别只能包含字母、数字和下划线: {args.reason}")
        return 1

    if config.is_whitelisted(args.ip):
        print(f"❌ 白名单IP不能封禁: {args.ip}")
        return 1

    try:
        minutes = args.minutes or config.block_durations[args.reason]
    except KeyError:
        print(f"❌ 未知的封禁类别且未指定时长: {args.reason}")
        return 1

    monitor = _build_monitor(config)
    if monitor.storage.block_ip(args.ip, args.reason, minutes):
        print(f"✅ 已封禁 {args.ip}，原因: {args.reason}，时长: {minutes} 分钟")
        return 0
    print(f"❌ 封禁失败: {args.ip}")
    return 1


def cmd_unblock(config: SecurityConfig, args: argparse.Namespace) -> int:
    monitor = _build_monitor(config)
    removed = monitor.storage.unblock_ip(args.ip, args.reason)
    print(f"已删除 {removed} 条封禁记录: {args.ip}")
    return 0


def cmd_serve(config: SecurityConfig, args: argparse.Namespace) -> int:
    from aiohttp import web
    from web.app import create_app

    app = create_app(_build_monitor(config))
    web.run_app(app, host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='请求威胁检测与自动封禁引擎',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  python main.py init-config config.yaml
  python main.py --config config.yaml show-config
  python main.py status 203.0.113.5
  python main.py block 203.0.113.5 --reason sql_injection
  python main.py serve --port 8080
        """
    )

    parser.add_argument(
        '--config', '-c',
        default=None,
        help='YAML配置文件路径 (默认读取 SECURITY_CONFIG_FILE)'
    )
    parser.add_argument(
        '--version', '-v',
        action='version',
        version='威胁检测引擎 v1.0.0'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    init_parser = subparsers.add_parser('init-config', help='创建默认配置文件')
    init_parser.add_argument('path', help='配置文件路径')

    subparsers.add_parser('show-config', help='显示当前配置')
    subparsers.add_parser('check-config', help='验证配置')
    subparsers.add_parser('ping', help='探测存储是否可用')

    status_parser = subparsers.add_parser('status', help='查询IP状态')
    status_parser.add_argument('ip', help='IP地址')

    block_parser = subparsers.add_parser('block', help='手动封禁IP')
    block_parser.add_argument('ip', help='IP地址')
    block_parser.add_argument('--reason', default='suspicious_ip', help='封禁类别 (默认: suspicious_ip)')
    block_parser.add_argument('--minutes', type=int, default=None, help='封禁时长（分钟），默认取类别配置')

    unblock_parser = subparsers.add_parser('unblock', help='解除IP封禁')
    unblock_parser.add_argument('ip', help='IP地址')
    unblock_parser.add_argument('--reason', default=None, help='仅解除该类别的封禁')

    serve_parser = subparsers.add_parser('serve', help='启动受保护的示例服务')
    serve_parser.add_argument('--host', default='0.0.0.0', help='监听地址 (默认: 0.0.0.0)')
    serve_parser.add_argument('--port', type=int, default=8080, help='监听端口 (默认: 8080)')

    return parser


COMMANDS = {
    'show-config': cmd_show_config,
    'check-config': cmd_check_config,
    'ping': cmd_ping,
    'status': cmd_status,
    'block': cmd_block,
    'unblock': cmd_unblock,
    'serve': cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    """主函数"""
    args = build_parser().parse_args(argv)

    if args.command == 'init-config':
        create_default_config(args.path)
        print(f"默认配置文件已创建: {args.path}")
        return 0

    # 安全配置无效时拒绝启动
    try:
        config = SecurityConfig(config_path=args.config)
        setup_logger_from_config('security', config.logging_settings)
    except (ConfigError, LoggerConfigError) as e:
        print(f"❌ 配置无效: {e}", file=sys.stderr)
        return 1

    return COMMANDS[args.command](config, args)


if __name__ == '__main__':
    sys.exit(main())
