"""
存储布局兼容性检查工具

对比合约两个版本的存储布局报告, 逐字节判断升级是否会破坏链上已有数据:
- storage_layout: 布局报告解析与字节映射展开
- layout_diff: 差异分类与新增字节链上校验
- reporting: 诊断消息与源码定位
"""

from .storage_layout import MalformedReportError, StorageLayout, build_byte_mapping, load_layout, parse_layout
from .layout_diff import (
    ChainReadError,
    StorageLayoutDiff,
    StorageLayoutDiffType,
    check_added_slots,
    check_layouts,
)
from .reporting import format_diff

__version__ = "0.1.0"

__all__ = [
    "MalformedReportError",
    "StorageLayout",
    "build_byte_mapping",
    "load_layout",
    "parse_layout",
    "ChainReadError",
    "StorageLayoutDiff",
    "StorageLayoutDiffType",
    "check_added_slots",
    "check_layouts",
    "format_diff",
]
