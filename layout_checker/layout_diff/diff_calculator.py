"""
存储布局差异计算器

逐字节对比参考布局(src)和候选布局(cmp)的字节映射,
把每一处差异归类为 LABEL / VARIABLE / VARIABLE_TYPE / VARIABLE_REMOVED,
并识别以下良性变化:
- 占用或替换 __gap 预留空间
- 在struct未使用的字节中新增成员
- foundry类型ID重新编号
- 接口类型与address互换
"""

import logging
import re
from typing import List, Optional

from ..storage_layout import (
    GAP_LABEL,
    ByteMapping,
    StorageLayout,
    StorageType,
    StorageVariableDetail,
    build_byte_mapping,
)
from ..storage_layout.byte_mapping import ENCODING_DYNAMIC_ARRAY, ENCODING_INPLACE, ENCODING_MAPPING
from .added_slot_verifier import check_added_slots
from .chain_reader import ChainReadError
from .diff_types import (
    StorageLayoutDiff,
    StorageLayoutDiffAdded,
    StorageLayoutDiffType,
    StorageLocation,
    sort_diffs,
    unique_diffs,
)

logger = logging.getLogger(__name__)

# foundry 在类型ID中嵌入的数字编号, 如 t_struct(Pool)1234_storage 中的 1234
FOUNDRY_TYPE_ID_REGEX = re.compile(r"(t_[a-z0-9_]+\([A-Z]\w*\))(\d+)")

# 字节对比结果: 视为新增字节 (延后做链上校验)
_ADDED = object()


def strip_foundry_type_id(type_id: str) -> str:
    """去掉类型ID中无语义的foundry数字编号, 仅用于类型相等比较"""
    return FOUNDRY_TYPE_ID_REGEX.sub(r"\1", type_id)


def _is_address_like(type_id: str) -> bool:
    return type_id.startswith("t_contract") or type_id == "t_address"


def _same_variable(src: StorageVariableDetail, cmp: StorageVariableDetail) -> bool:
    return (
        cmp.type == src.type
        and cmp.full_label == src.full_label
        and cmp.slot == src.slot
        and cmp.offset == src.offset
        and cmp.start_byte == src.start_byte
    )


def _element_bytes_checked(src_type: StorageType, cmp_type: StorageType) -> bool:
    """
    元素(mapping值/数组元素)的字节是否会通过示例元素单独对比

    非inplace编码的元素, 或有成员的struct元素, 其字节已在示例元素位置展开。
    """
    return (
        (cmp_type.encoding == src_type.encoding and cmp_type.encoding != ENCODING_INPLACE)
        or cmp_type.has_members
    )


class StorageLayoutChecker:
    """
    存储布局兼容性检查器

    Phase A: 遍历候选布局的每个字节, 与参考布局对比并分类
    Phase B: (可选) 参考布局中存在、候选布局中不存在的字节视为删除
    最后按 (slot, offset) 排序并按变量去重, 再对新增字节做链上校验。
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__ + '.StorageLayoutChecker')

    def check_layouts(
        self,
        src_layout: StorageLayout,
        cmp_layout: StorageLayout,
        check_removals: bool = False,
        address: Optional[str] = None,
        reader=None,
        max_workers: int = 1
    ) -> List[StorageLayoutDiff]:
        """
        对比两个存储布局

        Args:
            src_layout: 参考布局 (已部署版本)
            cmp_layout: 候选布局 (新版本)
            check_removals: 是否报告被删除的变量
            address: 已部署合约地址 (用于新增字节链上校验)
            reader: 链上读取器
            max_workers: 链上读取并发数

        Returns:
            按 (slot, offset) 排序、按变量去重的差异列表

        Raises:
            MalformedReportError: 布局引用了未知类型
            ChainReadError: 链上校验部分失败, diffs 中包含已计算出的全部差异
        """
        src_mapping = build_byte_mapping(src_layout)
        cmp_mapping = build_byte_mapping(cmp_layout)

        diffs: List[StorageLayoutDiff] = []
        added: List[StorageLayoutDiffAdded] = []

        for byte, cmp_var in cmp_mapping.items():
            location = StorageLocation.from_byte(byte)
            src_var = src_mapping.get(byte)

            if src_var is None:
                added.append(StorageLayoutDiffAdded(location=location, cmp=cmp_var))
                continue  # 参考布局未使用该字节

            diff_type = self._compare_byte(src_layout, cmp_layout, src_var, cmp_var)
            if diff_type is None:
                continue
            if diff_type is _ADDED:
                added.append(StorageLayoutDiffAdded(location=location, cmp=cmp_var))
                continue

            diffs.append(StorageLayoutDiff(type=diff_type, location=location, src=src_var, cmp=cmp_var))

        if check_removals:
            diffs.extend(self._find_removals(src_mapping, cmp_mapping))

        # 排序后只保留每个变量的第一个字节 (即变量的起始字节)
        diffs = unique_diffs(sort_diffs(diffs))

        self.logger.info(
            f"布局对比完成: 参考 {len(src_mapping)} 字节, 候选 {len(cmp_mapping)} 字节, "
            f"{len(diffs)} 处差异, {len(added)} 个新增字节"
        )

        try:
            added_diffs = check_added_slots(added, address, reader, max_workers)
        except ChainReadError as e:
            e.diffs = diffs + e.diffs
            raise

        return diffs + added_diffs

    def _compare_byte(
        self,
        src_layout: StorageLayout,
        cmp_layout: StorageLayout,
        src_var: StorageVariableDetail,
        cmp_var: StorageVariableDetail
    ):
        """
        对比同一字节上的两个变量

        Returns:
            None 表示无差异, _ADDED 表示视为新增字节, 否则为差异类型
        """
        if _same_variable(src_var, cmp_var):
            return None  # 变量未变化

        if src_var.label == GAP_LABEL or cmp_var.label == GAP_LABEL:
            return _ADDED  # 占用了gap, 或被gap替换

        if cmp_var.full_label != src_var.full_label:
            if cmp_var.full_label.startswith(f"({src_var.type_label} {src_var.label})"):
                return _ADDED  # 参考struct未使用字节中的新成员

            if cmp_var.type == src_var.type:
                if cmp_var.label != src_var.label:
                    return StorageLayoutDiffType.LABEL
                return None  # 仅外层struct改名

            return StorageLayoutDiffType.VARIABLE

        if strip_foundry_type_id(cmp_var.type) == strip_foundry_type_id(src_var.type):
            return None

        if self._is_compatible_type_change(src_layout, cmp_layout, src_var, cmp_var):
            return None

        return StorageLayoutDiffType.VARIABLE_TYPE

    def _is_compatible_type_change(
        self,
        src_layout: StorageLayout,
        cmp_layout: StorageLayout,
        src_var: StorageVariableDetail,
        cmp_var: StorageVariableDetail
    ) -> bool:
        cmp_type = cmp_layout.resolve_type(cmp_var.type)
        if cmp_type.has_members:
            return True  # 成员字节会单独对比

        src_type = src_layout.resolve_type(src_var.type)
        if cmp_type.encoding != src_type.encoding:
            return False

        if cmp_type.encoding == ENCODING_MAPPING and cmp_type.key == src_type.key:
            return _element_bytes_checked(
                src_layout.resolve_type(src_type.value),
                cmp_layout.resolve_type(cmp_type.value),
            )

        if cmp_type.encoding == ENCODING_DYNAMIC_ARRAY:
            return _element_bytes_checked(
                src_layout.resolve_type(src_type.base),
                cmp_layout.resolve_type(cmp_type.base),
            )

        # 接口类型本质上是address
        return _is_address_like(src_var.type) and _is_address_like(cmp_var.type)

    def _find_removals(self, src_mapping: ByteMapping, cmp_mapping: ByteMapping) -> List[StorageLayoutDiff]:
        removals = []
        for byte, src_var in src_mapping.items():
            if byte in cmp_mapping:
                continue
            removals.append(StorageLayoutDiff(
                type=StorageLayoutDiffType.VARIABLE_REMOVED,
                location=StorageLocation.from_byte(byte),
                src=src_var,
            ))
        return removals


def check_layouts(
    src_layout: StorageLayout,
    cmp_layout: StorageLayout,
    check_removals: bool = False,
    address: Optional[str] = None,
    reader=None,
    max_workers: int = 1
) -> List[StorageLayoutDiff]:
    """对比两个存储布局 (见 StorageLayoutChecker.check_layouts)"""
    return StorageLayoutChecker().check_layouts(
        src_layout,
        cmp_layout,
        check_removals=check_removals,
        address=address,
        reader=reader,
        max_workers=max_workers,
    )
