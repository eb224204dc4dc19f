"""
存储布局差异类型定义
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple, TypeVar

from ..storage_layout import STORAGE_WORD_SIZE, StorageVariableDetail


class StorageLayoutDiffType(Enum):
    """差异类型"""
    LABEL = "label"                              # 变量改名 (类型不变)
    VARIABLE = "variable"                        # 字节被另一个变量占用
    VARIABLE_TYPE = "variable_type"              # 同一变量的类型不兼容
    VARIABLE_REMOVED = "variable_removed"        # 变量被删除
    NON_ZERO_ADDED_SLOT = "non_zero_added_slot"  # 新增变量所在字节链上非零


@dataclass(frozen=True)
class StorageLocation:
    """存储位置 (槽位 + 槽内字节偏移)"""
    slot: int
    offset: int

    @classmethod
    def from_byte(cls, byte: int) -> "StorageLocation":
        return cls(slot=byte // STORAGE_WORD_SIZE, offset=byte % STORAGE_WORD_SIZE)

    def sort_key(self) -> Tuple[int, int]:
        return self.slot, self.offset


@dataclass(frozen=True)
class StorageLayoutDiffAdded:
    """新增字节候选 (参考布局中未使用的字节)"""
    location: StorageLocation
    cmp: StorageVariableDetail


@dataclass(frozen=True)
class StorageLayoutDiff:
    """单条存储布局差异"""
    type: StorageLayoutDiffType
    location: StorageLocation
    src: Optional[StorageVariableDetail] = None
    cmp: Optional[StorageVariableDetail] = None
    parent: Optional[str] = None
    value: Optional[str] = None  # 链上观测到的字节 (仅 NON_ZERO_ADDED_SLOT)

    def identity(self, ignore_value: bool = False) -> Tuple:
        """去重键: 忽略location,同一变量的多个字节归为一条"""
        return (
            self.type,
            self.parent,
            self.src,
            self.cmp,
            None if ignore_value else self.value,
        )

    def to_dict(self) -> dict:
        return {
            'type': self.type.name,
            'slot': hex(self.location.slot),
            'offset': self.location.offset,
            'parent': self.parent,
            'src': self.src.full_label if self.src else None,
            'src_type': self.src.type_label if self.src else None,
            'cmp': self.cmp.full_label if self.cmp else None,
            'cmp_type': self.cmp.type_label if self.cmp else None,
            'value': self.value,
        }


T = TypeVar("T", StorageLayoutDiff, StorageLayoutDiffAdded)


def sort_diffs(diffs: Iterable[T]) -> List[T]:
    """按 (slot, offset) 升序排序 (稳定排序)"""
    return sorted(diffs, key=lambda diff: diff.location.sort_key())


def unique_diffs(diffs: Iterable[StorageLayoutDiff], ignore_value: bool = False) -> List[StorageLayoutDiff]:
    """只保留每个变量的第一条差异 (排序后即变量的起始字节)"""
    seen = set()
    result = []
    for diff in diffs:
        key = diff.identity(ignore_value)
        if key in seen:
            continue
        seen.add(key)
        result.append(diff)
    return result
