"""
存储字节映射构建器

根据Solidity存储布局规则,把布局报告递归展开为
"绝对字节位置 -> 变量详情" 的扁平映射。

支持:
- 基础类型: 占用 [startByte, startByte + numberOfBytes)
- Struct: 递归展开成员,成员slot累加为绝对slot
- Dynamic array: 元素0位于 keccak256(uint256(slot))
- Mapping: key=0 的值位于 keccak256(uint256(0) . uint256(slot))

Mapping和动态数组的真实key/index空间是无界的,这里只展开一个
示例元素(canonical element),用于类型级别的对比。
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, Optional

from eth_utils import keccak

from .layout_model import (
    STORAGE_WORD_SIZE,
    MalformedReportError,
    ParentRef,
    StorageLayout,
    StorageVariable,
)

logger = logging.getLogger(__name__)

ENCODING_INPLACE = "inplace"
ENCODING_MAPPING = "mapping"
ENCODING_DYNAMIC_ARRAY = "dynamic_array"


@dataclass(frozen=True)
class StorageVariableDetail:
    """字节映射中的变量详情 (已计算绝对位置和完整标签)"""
    label: str
    type: str
    slot: int
    offset: int
    full_label: str
    type_label: str
    start_byte: int
    parent: Optional[ParentRef] = None


ByteMapping = Dict[int, StorageVariableDetail]


def _word(value: int) -> bytes:
    """uint256 大端编码 (左补零到32字节)"""
    return value.to_bytes(STORAGE_WORD_SIZE, byteorder='big')


def array_element_slot(base_slot: int, index: int = 0) -> int:
    """
    计算dynamic array元素槽位

    Solidity规则:
    - Array长度存储在base_slot
    - 元素从keccak256(base_slot)开始连续存放

    Args:
        base_slot: 数组变量的槽位
        index: 元素所在的槽位偏移 (元素跨多个槽位时需自行乘以元素槽位数)

    Returns:
        元素槽位号
    """
    data_slot = int.from_bytes(keccak(_word(base_slot)), byteorder='big')
    return data_slot + index


def mapping_value_slot(base_slot: int, key: int = 0) -> int:
    """
    计算mapping派生槽位

    Solidity规则: keccak256(h(k) . p)
    其中 k 为key (这里只处理可编码为uint256的key), p 为mapping变量的槽位。
    """
    return int.from_bytes(keccak(_word(key) + _word(base_slot)), byteorder='big')


def _require(value: Optional[str], type_id: str, field_name: str) -> str:
    if not value:
        raise MalformedReportError(f"类型 {type_id} 缺少 {field_name} 字段", identifier=type_id)
    return value


def _merge_into(target: ByteMapping, source: ByteMapping, context: str) -> None:
    """合并映射,后者覆盖前者;重叠在合法报告中不应出现,仅记录警告"""
    # 只遍历较小的一侧, target 会随变量数增长
    smaller, larger = (source, target) if len(source) <= len(target) else (target, source)
    overlap = [byte for byte in smaller if byte in larger]
    if overlap:
        logger.warning(
            f"字节映射冲突: {context} 覆盖了 {len(overlap)} 个已占用字节 "
            f"(首个字节 #{min(overlap)}), 布局报告可能有误"
        )
    target.update(source)


def map_variable(layout: StorageLayout, variable: StorageVariable, start_byte: int) -> ByteMapping:
    """
    展开单个变量占用的全部字节

    Args:
        layout: 存储布局
        variable: 变量 (slot 已是相对顶层的绝对slot)
        start_byte: 变量起始字节的绝对位置

    Returns:
        该变量(含示例元素、struct成员)的字节映射
    """
    var_type = layout.resolve_type(variable.type)

    example: ByteMapping = {}
    if var_type.encoding == ENCODING_DYNAMIC_ARRAY:
        slot = array_element_slot(variable.slot)
        element = replace(
            variable,
            slot=slot,
            offset=0,
            type=_require(var_type.base, variable.type, "base"),
            label=variable.label.replace("[]", "[0]", 1),
        )
        example = map_variable(layout, element, slot * STORAGE_WORD_SIZE)
    elif var_type.encoding == ENCODING_MAPPING:
        slot = mapping_value_slot(variable.slot)
        element = replace(
            variable,
            slot=slot,
            offset=0,
            type=_require(var_type.value, variable.type, "value"),
            label=f"{variable.label}[0]",
        )
        example = map_variable(layout, element, slot * STORAGE_WORD_SIZE)

    parent = variable.parent
    detail = StorageVariableDetail(
        label=variable.label,
        type=variable.type,
        slot=variable.slot,
        offset=variable.offset,
        full_label=(
            f"({parent.type_label} {parent.label}).{variable.label}" if parent else variable.label
        ),
        type_label=var_type.label.replace("struct ", "", 1),
        start_byte=start_byte,
        parent=parent,
    )

    if not var_type.has_members:
        # 报告未给出大小时,至少占用一个字节
        size = var_type.number_of_bytes or 1
        own = {byte: detail for byte in range(start_byte, start_byte + size)}

        mapping = dict(example)
        _merge_into(mapping, own, detail.full_label)
        return mapping

    # Struct本身不占字节,所有字节都来自成员;成员未覆盖的字节视为未使用
    member_parent = ParentRef(label=variable.label, type_label=detail.type_label)
    mapping: ByteMapping = {}
    for member in var_type.members:
        member_mapping = map_variable(
            layout,
            replace(member, parent=member_parent, slot=variable.slot + member.slot),
            start_byte + member.slot * STORAGE_WORD_SIZE + member.offset,
        )
        _merge_into(mapping, member_mapping, f"{detail.full_label}.{member.label}")

    return mapping


def build_byte_mapping(layout: StorageLayout) -> ByteMapping:
    """
    构建整个布局的字节映射

    Args:
        layout: 存储布局

    Returns:
        绝对字节位置 -> 变量详情
    """
    mapping: ByteMapping = {}
    for variable in layout.storage:
        _merge_into(
            mapping,
            map_variable(layout, variable, variable.slot * STORAGE_WORD_SIZE + variable.offset),
            variable.label,
        )

    logger.debug(f"字节映射构建完成: {len(layout.storage)} 个顶层变量, {len(mapping)} 个字节")
    return mapping
