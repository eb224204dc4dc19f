"""
布局差异分析模块

提供两个版本存储布局之间的兼容性检查:
- 逐字节对比并分类差异
- 新增字节的链上非零校验
- 链上存储读取器
"""

from .diff_types import (
    StorageLayoutDiff,
    StorageLayoutDiffAdded,
    StorageLayoutDiffType,
    StorageLocation,
    sort_diffs,
    unique_diffs,
)
from .chain_reader import ChainReadError, JsonRpcStorageReader, Web3StorageReader
from .added_slot_verifier import check_added_slots
from .diff_calculator import (
    FOUNDRY_TYPE_ID_REGEX,
    StorageLayoutChecker,
    check_layouts,
    strip_foundry_type_id,
)

__all__ = [
    "StorageLayoutDiff",
    "StorageLayoutDiffAdded",
    "StorageLayoutDiffType",
    "StorageLocation",
    "sort_diffs",
    "unique_diffs",
    "ChainReadError",
    "JsonRpcStorageReader",
    "Web3StorageReader",
    "check_added_slots",
    "FOUNDRY_TYPE_ID_REGEX",
    "StorageLayoutChecker",
    "check_layouts",
    "strip_foundry_type_id",
]
