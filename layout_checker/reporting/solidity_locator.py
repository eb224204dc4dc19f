"""
Solidity源码定位器

为差异诊断提供变量声明在源码中的位置 (尽力而为):
- 去除注释和字符串字面量 (保留换行, 位置不变)
- 定位合约定义体
- 查找与变量名相同的第一个标识符

找不到时返回全0的占位范围, 不抛异常。
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourcePosition:
    """源码位置 (行号从1开始, 列号从0开始)"""
    line: int
    column: int


@dataclass(frozen=True)
class SourceRange:
    """源码范围"""
    start: SourcePosition
    end: SourcePosition


ZERO_RANGE = SourceRange(start=SourcePosition(0, 0), end=SourcePosition(0, 0))


class SolidityLocator:
    """基于正则的Solidity标识符定位器"""

    # 注释和字符串字面量
    MASK_PATTERN = re.compile(
        r'//[^\n]*|/\*.*?\*/|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'',
        re.DOTALL
    )
    IDENTIFIER_PATTERN = re.compile(r'(?<![\w$])[A-Za-z_$][\w$]*')

    def __init__(self, source: str, contract_name: Optional[str] = None, path: Optional[Path] = None):
        """
        初始化定位器

        Args:
            source: Solidity源码
            contract_name: 合约名 (提供时优先在合约定义体内查找)
            path: 源文件路径 (仅用于展示)

        Raises:
            ValueError: 源码中没有指定的合约定义
        """
        self.path = path
        self.contract_name = contract_name
        self.logger = logging.getLogger(__name__ + '.SolidityLocator')
        self._text = self.MASK_PATTERN.sub(self._blank, source)
        self._body = self._find_contract_body(contract_name) if contract_name else None

    @classmethod
    def from_file(cls, contract: str) -> "SolidityLocator":
        """
        从 "path/File.sol:Contract" 形式的合约标识创建定位器

        Raises:
            FileNotFoundError: 源文件不存在
            ValueError: 源码中没有指定的合约定义
        """
        path_str, _, contract_name = contract.partition(':')
        path = Path(path_str)
        if not path.exists():
            raise FileNotFoundError(f"源文件不存在: {path}")

        source = path.read_text(encoding='utf-8')
        return cls(source, contract_name or None, path)

    @staticmethod
    def _blank(match: re.Match) -> str:
        return ''.join('\n' if ch == '\n' else ' ' for ch in match.group(0))

    def _find_contract_body(self, contract_name: str) -> Tuple[int, int]:
        definition = re.search(
            r'\b(?:abstract\s+contract|contract|library|interface)\s+' + re.escape(contract_name) + r'\b',
            self._text
        )
        if not definition:
            raise ValueError(f"Contract definition not found: {contract_name}")

        open_brace = self._text.find('{', definition.end())
        if open_brace < 0:
            return definition.start(), len(self._text)

        depth = 0
        for index in range(open_brace, len(self._text)):
            ch = self._text[index]
            if ch == '{':
                depth += 1
            elif ch == '}':
                depth -= 1
                if depth == 0:
                    return definition.start(), index + 1

        return definition.start(), len(self._text)

    def _position(self, index: int) -> SourcePosition:
        line = self._text.count('\n', 0, index) + 1
        line_start = self._text.rfind('\n', 0, index) + 1
        return SourcePosition(line=line, column=index - line_start)

    def _search(self, label: str, start: int, end: int) -> Optional[SourceRange]:
        for match in self.IDENTIFIER_PATTERN.finditer(self._text, start, end):
            if match.group(0) == label:
                return SourceRange(start=self._position(match.start()), end=self._position(match.end()))
        return None

    def locate(self, label: Optional[str]) -> SourceRange:
        """
        查找变量名对应的源码范围

        Returns:
            第一个匹配标识符的范围; 未找到时返回 ZERO_RANGE
        """
        if not label:
            return ZERO_RANGE

        found = None
        if self._body:
            found = self._search(label, *self._body)
        if found is None:
            found = self._search(label, 0, len(self._text))

        if found is None:
            self.logger.debug(f"源码中未找到标识符: {label}")
            return ZERO_RANGE
        return found
