#!/usr/bin/env python
"""
简历处理服务启动脚本

用法:
    python run.py                        # 默认启动 (127.0.0.1:8000)
    python run.py -p 8080 --host 0.0.0.0
    python run.py --sweep-interval 60    # 每 60 秒自动重试失败记录
    python run.py --show-config          # 打印当前生效的流水线配置后退出
"""
import argparse
import os
import shutil
import sys
from pathlib import Path

import uvicorn

ROOT_DIR = Path(__file__).parent
sys.path.insert(0, str(ROOT_DIR))


def parse_args():
    parser = argparse.ArgumentParser(
        description="简历处理服务启动脚本",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-p", "--port", type=int, default=8000, help="服务端口 (默认: 8000)")
    parser.add_argument("--host", type=str, default="127.0.0.1", help="服务地址 (默认: 127.0.0.1)")
    parser.add_argument("--reload", action="store_true", help="开启热重载 (开发模式)")
    parser.add_argument(
        "--sweep-interval",
        type=int,
        default=None,
        help="定时重试扫描间隔秒数，覆盖 RETRY_SWEEP_INTERVAL_SECONDS (0 为关闭)",
    )
    parser.add_argument("--show-config", action="store_true", help="打印流水线配置后退出")
    return parser.parse_args()


def prepare_env():
    """缺少 .env 时从示例复制"""
    env_file = ROOT_DIR / ".env"
    env_example = ROOT_DIR / ".env.example"
    if env_file.exists():
        return
    if env_example.exists():
        shutil.copy(env_example, env_file)
        print("✅ 已从 .env.example 创建 .env，请根据需要修改配置")
    else:
        print("⚠️  未找到 .env 文件，将使用默认配置")


def show_config():
    from app.core.config import get_settings

    settings = get_settings()
    print(f"数据库:       {settings.database_url}")
    print(f"上传目录:     {settings.upload_dir}")
    print(f"模型:         {settings.llm_model} / {settings.transcription_model}")
    print(f"API Key:      {'已配置' if settings.llm_api_key else '未配置'}")
    print(f"租约时长:     {settings.lease_duration_seconds}s")
    print(f"阶段超时:     {settings.stage_timeout_seconds}s")
    print(f"最大重试:     {settings.max_retries}")
    print(f"并发处理数:   {settings.pipeline_max_workers}")
    print(f"定时重试:     {settings.retry_sweep_interval_seconds or '关闭'}")


def main():
    args = parse_args()
    prepare_env()

    # 在导入应用之前设置，Settings 从环境变量读取
    if args.sweep_interval is not None:
        os.environ["RETRY_SWEEP_INTERVAL_SECONDS"] = str(args.sweep_interval)

    if args.show_config:
        show_config()
        return

    print("=" * 50)
    print("  简历处理流水线服务")
    print("=" * 50)
    print(f"   地址: http://{args.host}:{args.port}")
    print(f"   文档: http://{args.host}:{args.port}/docs")
    print(f"   热重载: {'开启' if args.reload else '关闭'}")
    print("-" * 50)

    # 后台处理池与定时重试都在进程内，只启动单个 worker 进程
    try:
        uvicorn.run(
            "app.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level="info",
        )
    except KeyboardInterrupt:
        print("\n👋 服务已停止")


if __name__ == "__main__":
    main()
