"""
诊断输出模块

- 差异消息格式化 (级别、标题、位置)
- Solidity源码定位
"""

from .solidity_locator import ZERO_RANGE, SolidityLocator, SourcePosition, SourceRange
from .diff_formatter import (
    DIFF_LEVELS,
    DIFF_TITLES,
    LEVEL_ERROR,
    LEVEL_WARNING,
    FormattedStorageLayoutDiff,
    diff_level,
    format_diff,
    format_location,
)

__all__ = [
    "ZERO_RANGE",
    "SolidityLocator",
    "SourcePosition",
    "SourceRange",
    "DIFF_LEVELS",
    "DIFF_TITLES",
    "LEVEL_ERROR",
    "LEVEL_WARNING",
    "FormattedStorageLayoutDiff",
    "diff_level",
    "format_diff",
    "format_location",
]
