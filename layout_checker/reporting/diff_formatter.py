"""
差异诊断格式化

把 StorageLayoutDiff 渲染为可读消息, 并附带严重级别、标题和源码位置。
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from ..layout_diff import StorageLayoutDiff, StorageLayoutDiffType
from .solidity_locator import ZERO_RANGE, SourceRange

logger = logging.getLogger(__name__)

LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"

DIFF_LEVELS: Dict[StorageLayoutDiffType, str] = {
    StorageLayoutDiffType.LABEL: LEVEL_WARNING,
    StorageLayoutDiffType.VARIABLE: LEVEL_ERROR,
    StorageLayoutDiffType.VARIABLE_TYPE: LEVEL_ERROR,
    StorageLayoutDiffType.VARIABLE_REMOVED: LEVEL_ERROR,
    StorageLayoutDiffType.NON_ZERO_ADDED_SLOT: LEVEL_ERROR,
}

DIFF_TITLES: Dict[StorageLayoutDiffType, str] = {
    StorageLayoutDiffType.LABEL: "Label diff",
    StorageLayoutDiffType.VARIABLE: "Variable diff",
    StorageLayoutDiffType.VARIABLE_TYPE: "Variable type diff",
    StorageLayoutDiffType.VARIABLE_REMOVED: "Variable removal",
    StorageLayoutDiffType.NON_ZERO_ADDED_SLOT: "Non-zero added slot",
}


@dataclass(frozen=True)
class FormattedStorageLayoutDiff:
    """格式化后的差异"""
    type: StorageLayoutDiffType
    level: str
    title: str
    message: str
    loc: SourceRange = ZERO_RANGE

    def to_dict(self) -> dict:
        return {
            'type': self.type.name,
            'level': self.level,
            'title': self.title,
            'message': self.message,
            'loc': {
                'start': {'line': self.loc.start.line, 'column': self.loc.start.column},
                'end': {'line': self.loc.end.line, 'column': self.loc.end.column},
            },
        }


def diff_level(diff_type: StorageLayoutDiffType) -> str:
    return DIFF_LEVELS.get(diff_type, LEVEL_ERROR)


def format_location(diff: StorageLayoutDiff) -> str:
    """如 "storage slot 0x00..0c, byte #0" 或 "Struct slot #2, byte #4" """
    if diff.parent:
        prefix = f"{diff.parent} slot #{diff.location.slot}"
    else:
        prefix = f"storage slot 0x{diff.location.slot:064x}"
    return f"{prefix}, byte #{diff.location.offset}"


def format_message(diff: StorageLayoutDiff) -> str:
    location = format_location(diff)
    src, cmp = diff.src, diff.cmp

    if diff.type == StorageLayoutDiffType.LABEL:
        return f'variable "{src.full_label}" was renamed to "{cmp.full_label}". Is it intentional? ({location})'
    if diff.type == StorageLayoutDiffType.VARIABLE_TYPE:
        return (
            f'variable "{src.full_label}" was of type "{src.type_label}" '
            f'but is now "{cmp.type_label}" ({location})'
        )
    if diff.type == StorageLayoutDiffType.VARIABLE_REMOVED:
        return f'variable "{src.full_label}" of type "{src.type_label}" was removed ({location})'
    if diff.type == StorageLayoutDiffType.VARIABLE:
        return (
            f'variable "{src.full_label}" of type "{src.type_label}" was replaced by '
            f'variable "{cmp.full_label}" of type "{cmp.type_label}" ({location})'
        )
    if diff.type == StorageLayoutDiffType.NON_ZERO_ADDED_SLOT:
        return (
            f'variable "{cmp.full_label}" of type "{cmp.type_label}" was added at a non-zero '
            f'storage byte ({location}: 0x{diff.value})'
        )
    return "Storage layout diff"


def format_diff(diff: StorageLayoutDiff, locator=None) -> FormattedStorageLayoutDiff:
    """
    格式化单条差异

    Args:
        diff: 差异
        locator: 源码定位器 (提供 locate(label) -> SourceRange), 可选

    Returns:
        FormattedStorageLayoutDiff
    """
    variable = diff.cmp or diff.src
    loc = locator.locate(variable.label) if locator is not None and variable is not None else ZERO_RANGE

    return FormattedStorageLayoutDiff(
        type=diff.type,
        level=diff_level(diff.type),
        title=DIFF_TITLES.get(diff.type, "Storage layout diff"),
        message=format_message(diff),
        loc=loc,
    )
