"""
存储布局报告模型

将编译器(forge/solc)生成的storageLayout报告规范化为精确整数表示:
- slot / offset / numberOfBytes 统一转换为Python int (任意精度)
- 类型字典按类型ID索引
- 报告结构不合法时抛出 MalformedReportError

语义校验(类型是否合理、是否重叠等)不在此处完成,由字节映射构建器负责。
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# 存储字(word)大小,单位字节
STORAGE_WORD_SIZE = 32

GAP_LABEL = "__gap"


class MalformedReportError(ValueError):
    """存储布局报告结构不合法 (非JSON、缺少字段、数值字段非数字、未知类型ID)"""

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


@dataclass(frozen=True)
class ParentRef:
    """父级上下文的不可变副本,仅用于渲染完整标签"""
    label: str
    type_label: str


@dataclass(frozen=True)
class StorageVariable:
    """存储变量声明"""
    label: str
    type: str
    slot: int
    offset: int = 0
    ast_id: Optional[int] = None
    contract: Optional[str] = None
    parent: Optional[ParentRef] = None


@dataclass(frozen=True)
class StorageType:
    """存储类型描述"""
    encoding: str
    label: str
    number_of_bytes: Optional[int] = None
    members: Tuple[StorageVariable, ...] = ()
    base: Optional[str] = None
    key: Optional[str] = None
    value: Optional[str] = None

    @property
    def has_members(self) -> bool:
        return len(self.members) > 0


@dataclass(frozen=True)
class StorageLayout:
    """规范化后的存储布局报告"""
    storage: Tuple[StorageVariable, ...] = ()
    types: Dict[str, StorageType] = field(default_factory=dict)

    def resolve_type(self, type_id: str) -> StorageType:
        """
        按类型ID查找类型描述

        Raises:
            MalformedReportError: 类型ID不在类型字典中
        """
        try:
            return self.types[type_id]
        except KeyError:
            raise MalformedReportError(f"未知的类型ID: {type_id}", identifier=type_id) from None


def _to_int(value: Any, field_name: str, identifier: str) -> int:
    """将十进制字符串、0x十六进制字符串或整数转换为int"""
    if isinstance(value, bool):
        raise MalformedReportError(
            f"{identifier}: 字段 {field_name} 不是数字: {value!r}", identifier=identifier
        )
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                return int(text, 16)
            return int(text, 10)
        except ValueError:
            pass
    raise MalformedReportError(
        f"{identifier}: 字段 {field_name} 不是数字: {value!r}", identifier=identifier
    )


def _parse_variable(raw: Any, context: str) -> StorageVariable:
    if not isinstance(raw, Mapping):
        raise MalformedReportError(f"{context}: 变量定义必须是对象", identifier=context)

    label = raw.get("label")
    type_id = raw.get("type")
    if not isinstance(label, str) or not isinstance(type_id, str):
        raise MalformedReportError(f"{context}: 变量缺少 label 或 type", identifier=context)
    if "slot" not in raw:
        raise MalformedReportError(f"{context}: 变量 {label} 缺少 slot", identifier=label)

    ast_id = raw.get("astId")
    return StorageVariable(
        label=label,
        type=type_id,
        slot=_to_int(raw["slot"], "slot", label),
        offset=_to_int(raw.get("offset", 0), "offset", label),
        ast_id=ast_id if isinstance(ast_id, int) else None,
        contract=raw.get("contract"),
    )


def _parse_type(type_id: str, raw: Any) -> StorageType:
    if not isinstance(raw, Mapping):
        raise MalformedReportError(f"类型 {type_id} 的定义必须是对象", identifier=type_id)

    raw_members = raw.get("members") or []
    if not isinstance(raw_members, list):
        raise MalformedReportError(f"类型 {type_id} 的 members 必须是数组", identifier=type_id)

    number_of_bytes = raw.get("numberOfBytes")
    return StorageType(
        encoding=raw.get("encoding", "inplace"),
        label=raw.get("label", type_id),
        number_of_bytes=(
            _to_int(number_of_bytes, "numberOfBytes", type_id) if number_of_bytes is not None else None
        ),
        members=tuple(_parse_variable(member, type_id) for member in raw_members),
        base=raw.get("base"),
        key=raw.get("key"),
        value=raw.get("value"),
    )


def parse_layout(content: Union[str, bytes, Mapping]) -> StorageLayout:
    """
    解析存储布局报告

    Args:
        content: JSON文本,或已解码的 {"storage": [...], "types": {...}} 对象

    Returns:
        StorageLayout对象

    Raises:
        MalformedReportError: 报告不是合法JSON或结构不符合预期
    """
    if isinstance(content, (str, bytes)):
        try:
            report = json.loads(content)
        except ValueError as e:
            logger.error(f"解析存储布局失败: {e}")
            raise MalformedReportError(f"存储布局不是合法JSON: {e}") from e
    else:
        report = content

    if not isinstance(report, Mapping):
        raise MalformedReportError("存储布局报告必须是JSON对象")

    raw_storage = report.get("storage")
    if not isinstance(raw_storage, list):
        raise MalformedReportError("存储布局报告缺少 storage 数组", identifier="storage")

    # 没有状态变量的合约, forge 会输出 "types": null
    raw_types = report.get("types") or {}
    if not isinstance(raw_types, Mapping):
        raise MalformedReportError("存储布局报告的 types 必须是对象", identifier="types")

    layout = StorageLayout(
        storage=tuple(_parse_variable(variable, "storage") for variable in raw_storage),
        types={type_id: _parse_type(type_id, raw) for type_id, raw in raw_types.items()},
    )

    logger.debug(f"解析存储布局: {len(layout.storage)} 个变量, {len(layout.types)} 个类型")
    return layout


def load_layout(path: Union[str, Path]) -> StorageLayout:
    """从文件加载存储布局报告"""
    path = Path(path)
    logger.info(f"加载存储布局报告: {path}")
    return parse_layout(path.read_text(encoding="utf-8"))
