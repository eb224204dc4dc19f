"""
存储布局模块

提供存储布局报告的规范化和字节级展开能力:
- 解析forge/solc存储布局报告
- 计算mapping/dynamic array的派生槽位
- 构建 绝对字节 -> 变量 的扁平映射
"""

from .layout_model import (
    STORAGE_WORD_SIZE,
    GAP_LABEL,
    MalformedReportError,
    ParentRef,
    StorageLayout,
    StorageType,
    StorageVariable,
    load_layout,
    parse_layout,
)
from .byte_mapping import (
    ByteMapping,
    StorageVariableDetail,
    array_element_slot,
    build_byte_mapping,
    map_variable,
    mapping_value_slot,
)
from .forge_inspector import LayoutGenerationError, create_layout

__all__ = [
    "STORAGE_WORD_SIZE",
    "GAP_LABEL",
    "MalformedReportError",
    "ParentRef",
    "StorageLayout",
    "StorageType",
    "StorageVariable",
    "load_layout",
    "parse_layout",
    "ByteMapping",
    "StorageVariableDetail",
    "array_element_slot",
    "build_byte_mapping",
    "map_variable",
    "mapping_value_slot",
    "LayoutGenerationError",
    "create_layout",
]
