"""
新增字节链上校验

布局对比中被判定为"新增"的字节, 在刚升级的合约上应读出0。
如果链上该字节已经非零, 新变量会读到脏数据 (仅凭布局报告无法发现)。

读取策略:
- 每个槽位最多读取一次 (按调用缓存, 不做进程级缓存)
- 读取器提供 read_many 时使用单次批量请求, 否则可用线程池并发读取
- 单个槽位失败不影响其他槽位, 最终以 ChainReadError 返回部分结果
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterable, List, Optional, Tuple

from ..storage_layout import STORAGE_WORD_SIZE
from .chain_reader import ChainReadError
from .diff_types import (
    StorageLayoutDiff,
    StorageLayoutDiffAdded,
    StorageLayoutDiffType,
    sort_diffs,
    unique_diffs,
)

logger = logging.getLogger(__name__)


def _read_sequential(reader, address: str, slots: List[int]) -> Tuple[Dict[int, bytes], List[int]]:
    words = {}
    failed = []
    for slot in slots:
        try:
            words[slot] = reader.read(address, slot)
        except ChainReadError as e:
            logger.error(f"读取存储槽 {hex(slot)} 失败: {e}")
            failed.append(slot)
    return words, failed


def _read_concurrent(reader, address: str, slots: List[int], max_workers: int) -> Tuple[Dict[int, bytes], List[int]]:
    words = {}
    failed = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(reader.read, address, slot): slot for slot in slots}
        for future in as_completed(futures):
            slot = futures[future]
            try:
                words[slot] = future.result()
            except ChainReadError as e:
                logger.error(f"读取存储槽 {hex(slot)} 失败: {e}")
                failed.append(slot)
    return words, sorted(failed)


def _read_words(reader, address: str, slots: List[int], max_workers: int) -> Tuple[Dict[int, bytes], List[int]]:
    """读取所有去重后的槽位, 返回 (成功的存储字, 失败的槽位)"""
    if hasattr(reader, 'read_many'):
        try:
            return reader.read_many(address, slots), []
        except ChainReadError as e:
            words = dict(e.words)
            return words, sorted(slot for slot in slots if slot not in words)

    if max_workers > 1 and len(slots) > 1:
        return _read_concurrent(reader, address, slots, max_workers)
    return _read_sequential(reader, address, slots)


def check_added_slots(
    added: Iterable[StorageLayoutDiffAdded],
    address: Optional[str] = None,
    reader=None,
    max_workers: int = 1
) -> List[StorageLayoutDiff]:
    """
    检查新增字节在链上是否为0

    Args:
        added: 新增字节候选
        address: 已部署合约地址
        reader: 链上读取器 (提供 read(address, slot) -> bytes)
        max_workers: 并发读取线程数

    Returns:
        NON_ZERO_ADDED_SLOT 差异列表 (每个变量只保留第一个非零字节);
        未提供地址或读取器时返回空列表

    Raises:
        ChainReadError: 部分槽位读取失败, diffs 为其余槽位的结果
    """
    if not address or reader is None:
        return []

    candidates = sort_diffs(added)
    if not candidates:
        return []

    slots = list(dict.fromkeys(candidate.location.slot for candidate in candidates))
    logger.info(f"校验 {len(candidates)} 个新增字节, 涉及 {len(slots)} 个存储槽: {address}")

    words, failed = _read_words(reader, address, slots, max_workers)

    diffs = []
    for candidate in candidates:
        word = words.get(candidate.location.slot)
        if word is None:
            continue

        # offset 0 为存储字的最低位字节 (大端存储字的最后一个字节)
        value = word[STORAGE_WORD_SIZE - 1 - candidate.location.offset]
        if value == 0:
            continue

        diffs.append(StorageLayoutDiff(
            type=StorageLayoutDiffType.NON_ZERO_ADDED_SLOT,
            location=candidate.location,
            cmp=candidate.cmp,
            value=f"{value:02x}",
        ))

    diffs = unique_diffs(diffs, ignore_value=True)

    if failed:
        raise ChainReadError(
            f"{len(failed)} 个存储槽读取失败: {', '.join(hex(slot) for slot in failed)}",
            slot=failed[0],
            failed_slots=failed,
            diffs=diffs
        )

    return diffs
