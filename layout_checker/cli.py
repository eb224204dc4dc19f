#!/usr/bin/env python3
"""
存储布局兼容性检查命令行

用法:
    layout-checker --src ref.json --cmp new.json
    layout-checker --src ref.json --contract src/Storage.sol:Storage --cwd contracts \\
        --address 0x... --rpc-url mainnet --check-removals

退出码:
    0 - 无错误级别差异
    1 - 存在错误级别差异, 或链上校验失败
    2 - 输入非法 (布局报告、配置、forge执行失败)
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from web3 import Web3

from .config import LOG_FORMAT, ConfigError, load_config, resolve_rpc_url
from .layout_diff import ChainReadError, Web3StorageReader, check_layouts
from .reporting import LEVEL_ERROR, SolidityLocator, format_diff
from .storage_layout import (
    LayoutGenerationError,
    MalformedReportError,
    create_layout,
    load_layout,
    parse_layout,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='检查两个版本合约存储布局的兼容性')
    parser.add_argument('--src', required=True, help='参考存储布局报告 (JSON)')
    cmp_group = parser.add_mutually_exclusive_group(required=True)
    cmp_group.add_argument('--cmp', help='候选存储布局报告 (JSON)')
    cmp_group.add_argument('--contract', help='用forge生成候选布局的合约, 如 src/Storage.sol:Storage')
    parser.add_argument('--cwd', default='.', help='forge项目目录')
    parser.add_argument('--save-cmp', help='保存forge生成的候选布局报告')
    parser.add_argument('--source', help='用于定位诊断位置的源文件, 如 src/Storage.sol:Storage')
    parser.add_argument('--config', help='配置文件 (默认 layout_checker.toml)')
    parser.add_argument('--check-removals', action='store_true', help='报告被删除的变量')
    parser.add_argument('--address', help='已部署合约地址 (启用新增字节链上校验)')
    parser.add_argument('--rpc-url', help='RPC地址或foundry.toml中的端点别名')
    parser.add_argument('--json', action='store_true', help='以JSON输出差异')
    parser.add_argument('--debug', action='store_true', help='启用调试日志')
    return parser


def _load_locator(source: Optional[str]) -> Optional[SolidityLocator]:
    if not source:
        return None
    try:
        return SolidityLocator.from_file(source)
    except (OSError, ValueError) as e:
        logger.warning(f"无法解析源码, 诊断不含位置信息: {e}")
        return None


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"配置错误: {e}", file=sys.stderr)
        return 2

    log_level = logging.DEBUG if args.debug else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format=LOG_FORMAT)

    cwd = Path(args.cwd)
    try:
        src_layout = load_layout(args.src)
        if args.cmp:
            cmp_layout = load_layout(args.cmp)
        else:
            content = create_layout(args.contract, cwd, timeout=config.forge_timeout)
            if args.save_cmp:
                Path(args.save_cmp).write_text(content, encoding='utf-8')
                logger.info(f"候选布局已保存: {args.save_cmp}")
            cmp_layout = parse_layout(content)
        rpc_url = resolve_rpc_url(args.rpc_url or config.rpc_url, cwd / 'foundry.toml')
    except (OSError, MalformedReportError, LayoutGenerationError, ConfigError) as e:
        logger.error(f"输入错误: {e}")
        return 2

    address = args.address or config.address
    if address and not Web3.is_address(address):
        logger.error(f"输入错误: 合约地址非法: {address}")
        return 2

    reader = None
    if address and rpc_url:
        reader = Web3StorageReader(
            rpc_url,
            block=config.block,
            retry_times=config.rpc_retry_times,
            retry_delay=config.rpc_retry_delay,
            timeout=config.rpc_timeout,
        )

    chain_error = None
    try:
        diffs = check_layouts(
            src_layout,
            cmp_layout,
            check_removals=args.check_removals or config.check_removals,
            address=address,
            reader=reader,
            max_workers=config.max_workers,
        )
    except MalformedReportError as e:
        logger.error(f"存储布局报告非法: {e}")
        return 2
    except ChainReadError as e:
        logger.error(f"链上校验失败, 槽位 {', '.join(hex(slot) for slot in e.failed_slots)}: {e}")
        chain_error = e
        diffs = e.diffs

    source = args.source or (str(cwd / args.contract) if args.contract else None)
    locator = _load_locator(source) if diffs else None
    formatted = [format_diff(diff, locator) for diff in diffs]

    if args.json:
        print(json.dumps([
            dict(item.to_dict(), **diff.to_dict()) for item, diff in zip(formatted, diffs)
        ], indent=2))
    else:
        path = locator.path if locator else None
        for item in formatted:
            position = f" ({path}:{item.loc.start.line}:{item.loc.start.column})" if path else ""
            print(f"[{item.level}] {item.title}: {item.message}{position}")

    if chain_error is not None or any(item.level == LEVEL_ERROR for item in formatted):
        logger.error("检测到不安全的存储布局变更")
        return 1

    logger.info(f"存储布局检查通过 ({len(formatted)} 条警告)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
