"""
链上存储读取器

为新增字节校验提供按槽位读取32字节存储字的能力:
- Web3StorageReader: 基于web3的 eth.get_storage_at, 带重试
- JsonRpcStorageReader: 基于requests的JSON-RPC批量请求, 连接池 + urllib3重试

读取器接口: read(address, slot) -> 32字节 bytes, 失败抛出 ChainReadError
"""

import logging
import time
from typing import Dict, Iterable, List, Optional, Union

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3

from ..storage_layout import STORAGE_WORD_SIZE

logger = logging.getLogger(__name__)

RPC_TIMEOUT = 30  # RPC超时（秒）
RPC_RETRY_TIMES = 3  # 重试次数
RPC_RETRY_DELAY = 2  # 重试延迟（秒）


class ChainReadError(Exception):
    """链上存储读取失败"""

    def __init__(
        self,
        message: str,
        slot: Optional[int] = None,
        failed_slots: Optional[List[int]] = None,
        diffs: Optional[list] = None,
        words: Optional[Dict[int, bytes]] = None
    ):
        super().__init__(message)
        self.slot = slot
        self.failed_slots = failed_slots if failed_slots is not None else ([slot] if slot is not None else [])
        # 部分结果: 已计算出的差异 / 批量读取中成功的存储字
        self.diffs = diffs if diffs is not None else []
        self.words = words if words is not None else {}


def _to_word(raw: Union[bytes, str]) -> bytes:
    """
    将RPC返回值规范化为32字节 (左补零)

    Raises:
        ValueError: 返回值为空、不是十六进制或超过32字节
    """
    if isinstance(raw, str):
        text = raw[2:] if raw.startswith(('0x', '0X')) else raw
        if len(text) % 2:
            text = '0' + text
        raw = bytes.fromhex(text)
    elif not isinstance(raw, (bytes, bytearray)):
        raise ValueError(f"存储字类型非法: {raw!r}")
    raw = bytes(raw)
    # 空结果不能当作全0, 否则会掩盖新增字节的非零值
    if not raw:
        raise ValueError("存储字为空")
    if len(raw) > STORAGE_WORD_SIZE:
        raise ValueError(f"存储字长度超过32字节: {len(raw)}")
    return raw.rjust(STORAGE_WORD_SIZE, b'\x00')


class Web3StorageReader:
    """基于web3的存储读取器"""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        w3: Optional[Web3] = None,
        block: Union[str, int] = "latest",
        retry_times: int = RPC_RETRY_TIMES,
        retry_delay: float = RPC_RETRY_DELAY,
        timeout: int = RPC_TIMEOUT
    ):
        """
        初始化读取器

        Args:
            rpc_url: RPC地址 (与w3二选一)
            w3: 已创建的Web3实例
            block: 读取的区块号或标签
            retry_times: 重试次数
            retry_delay: 重试间隔(秒)
            timeout: 单次请求超时(秒)
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("必须提供 rpc_url 或 w3")
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))

        self.w3 = w3
        self.block = block
        self.retry_times = max(1, retry_times)
        self.retry_delay = retry_delay
        self.logger = logging.getLogger(__name__ + '.Web3StorageReader')

    def read(self, address: str, slot: int) -> bytes:
        """读取指定槽位的32字节存储字"""
        try:
            checksum = Web3.to_checksum_address(address)
        except (ValueError, TypeError) as e:
            self.logger.error(f"合约地址非法: {address!r}: {e}")
            raise ChainReadError(f"合约地址非法 {address!r}: {e}", slot=slot) from e

        try:
            raw = self._retry_call(lambda: self.w3.eth.get_storage_at(checksum, slot, self.block))
            word = _to_word(raw)
        except Exception as e:
            self.logger.error(f"读取存储槽失败: {address}[{hex(slot)}]: {e}")
            raise ChainReadError(f"读取存储槽 {hex(slot)} 失败: {e}", slot=slot) from e

        self.logger.debug(f"读取存储槽: {address}[{hex(slot)}]")
        return word

    def _retry_call(self, func):
        """带重试的RPC调用"""
        for attempt in range(self.retry_times):
            try:
                return func()
            except Exception as e:
                if attempt < self.retry_times - 1:
                    self.logger.warning(f"RPC调用失败，重试 {attempt + 1}/{self.retry_times}: {e}")
                    time.sleep(self.retry_delay)
                else:
                    raise


class JsonRpcStorageReader:
    """基于JSON-RPC批量请求的存储读取器"""

    def __init__(
        self,
        rpc_url: str,
        block: Union[str, int] = "latest",
        retry_times: int = RPC_RETRY_TIMES,
        timeout: int = RPC_TIMEOUT,
        session: Optional[requests.Session] = None
    ):
        """
        初始化读取器

        Args:
            rpc_url: RPC地址
            block: 读取的区块号或标签
            retry_times: HTTP层自动重试次数
            timeout: 请求超时(秒)
            session: 自定义requests Session (默认创建带重试策略的连接池)
        """
        self.rpc_url = rpc_url
        self.block = hex(block) if isinstance(block, int) else block
        self.timeout = timeout
        self.session = session or self._create_session(retry_times)
        self.logger = logging.getLogger(__name__ + '.JsonRpcStorageReader')

    @staticmethod
    def _create_session(max_retries: int) -> requests.Session:
        """创建带重试策略的requests Session"""
        session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=0.3,  # 重试延迟: 0.3s, 0.6s, 1.2s...
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"]
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount('http://', adapter)
        session.mount('https://', adapter)
        session.headers.update({'Content-Type': 'application/json'})

        return session

    def read(self, address: str, slot: int) -> bytes:
        """读取指定槽位的32字节存储字"""
        return self.read_many(address, [slot])[slot]

    def read_many(self, address: str, slots: Iterable[int]) -> Dict[int, bytes]:
        """
        批量读取多个槽位 (单次JSON-RPC批量请求)

        Returns:
            {slot: 32字节存储字}

        Raises:
            ChainReadError: 请求失败, 或部分槽位读取失败 (failed_slots 列出失败的槽位)
        """
        slots = list(dict.fromkeys(slots))
        if not slots:
            return {}

        batch_requests = [
            {
                'jsonrpc': '2.0',
                'method': 'eth_getStorageAt',
                'params': [address, hex(slot), self.block],
                'id': i
            }
            for i, slot in enumerate(slots)
        ]

        try:
            response = self.session.post(self.rpc_url, json=batch_requests, timeout=self.timeout)
            response.raise_for_status()
            results = response.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"RPC批量请求失败: {e}")
            raise ChainReadError(f"RPC批量请求失败: {e}", slot=slots[0], failed_slots=slots) from e

        if isinstance(results, dict):
            results = [results]
        by_id = {item.get('id'): item for item in results if isinstance(item, dict)}

        words = {}
        failed = []
        for i, slot in enumerate(slots):
            item = by_id.get(i, {})
            if not isinstance(item.get('result'), str):
                self.logger.warning(
                    f"获取存储槽失败: {address}[{hex(slot)}], 结果: {item.get('result')!r}, 错误: {item.get('error')}"
                )
                failed.append(slot)
                continue
            try:
                words[slot] = _to_word(item['result'])
            except ValueError as e:
                self.logger.warning(f"存储槽返回值非法: {address}[{hex(slot)}]: {e}")
                failed.append(slot)

        if failed:
            raise ChainReadError(
                f"{len(failed)} 个存储槽读取失败",
                slot=failed[0],
                failed_slots=failed,
                words=words
            )

        self.logger.debug(f"批量读取 {len(words)} 个存储槽: {address}")
        return words
