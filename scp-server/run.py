#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
应用启动脚本
用于快速启动 SCP 授权服务

使用方法:
    python run.py                  # 默认启动（带自动重载）
    python run.py --no-reload      # 不启用自动重载
    python run.py --port 8080      # 指定端口
    python run.py --purge-expired  # 清理过期授权码与刷新令牌后退出
"""

import argparse
import os
import sys

import uvicorn
from dotenv import load_dotenv


def purge_expired() -> int:
    """执行一次过期令牌清理"""
    load_dotenv()

    from scp_server.config import settings
    from scp_server.db import create_tables
    from scp_server.dependencies import get_authorization_service, get_engine
    from scp_server.logging.config import StructuredLogger

    StructuredLogger.setup_logging(log_level=settings.log_level, enable_json=settings.log_format == "json")
    create_tables(get_engine())
    result = get_authorization_service().purge_expired()
    print(f"🧹 已清理: 授权码 {result['auth_codes']} 条, 刷新令牌 {result['refresh_tokens']} 条")
    return 0


def build_parser(settings) -> argparse.ArgumentParser:
    """命令行参数；监听地址与端口默认取自配置（HOST / PORT）"""
    parser = argparse.ArgumentParser(description="启动 SCP 授权服务")
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"服务器主机地址 (默认: {settings.host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"服务器端口 (默认: {settings.port})"
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="禁用自动重载功能"
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["critical", "error", "warning", "info", "debug", "trace"],
        help="日志级别 (默认: info)"
    )
    parser.add_argument(
        "--purge-expired",
        action="store_true",
        help="清理过期授权码与刷新令牌后退出"
    )
    return parser


def main():
    """主函数：解析命令行参数并启动应用。"""
    # 检查环境变量文件
    env_file = ".env"
    if not os.path.exists(env_file):
        print(f"⚠️  警告: 未找到 {env_file} 文件，请确保已配置环境变量（至少 JWT_SECRET）")
    load_dotenv()

    from scp_server.config import settings

    args = build_parser(settings).parse_args()

    if args.purge_expired:
        sys.exit(purge_expired())

    print(f"🚀 启动 SCP 授权服务...")
    print(f"📍 地址: http://{args.host}:{args.port}")
    print(f"📖 API 文档: http://{args.host}:{args.port}/docs")
    print(f"🔄 自动重载: {'启用' if not args.no_reload else '禁用'}")
    print(f"📝 日志级别: {args.log_level.upper()}")
    print("\n按 Ctrl+C 停止服务\n")

    try:
        uvicorn.run(
            "scp_server.main:app",
            host=args.host,
            port=args.port,
            reload=not args.no_reload,
            log_level=args.log_level,
            access_log=True
        )
    except KeyboardInterrupt:
        print("\n👋 服务已停止")


if __name__ == "__main__":
    main()
