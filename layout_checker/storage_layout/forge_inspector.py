"""
Forge存储布局生成

通过 `forge inspect <contract> storage-layout --json` 生成存储布局报告。
"""

import logging
import subprocess
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


class LayoutGenerationError(RuntimeError):
    """forge inspect 执行失败"""
    pass


def create_layout(contract: str, cwd: Union[str, Path] = ".", timeout: int = 300) -> str:
    """
    调用forge生成合约的存储布局

    Args:
        contract: 合约标识, 如 "src/Storage.sol:Storage"
        cwd: forge项目目录
        timeout: 超时时间(秒)

    Returns:
        存储布局JSON文本
    """
    cmd = ['forge', 'inspect', contract, 'storage-layout', '--json']
    logger.info(f"生成存储布局: {' '.join(cmd)} (cwd={cwd})")

    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError as e:
        raise LayoutGenerationError("未找到forge命令, 请先安装Foundry") from e
    except subprocess.TimeoutExpired as e:
        raise LayoutGenerationError(f"forge inspect 超时 ({timeout}秒): {contract}") from e

    if result.returncode != 0:
        logger.error(f"forge inspect 失败: {result.stderr.strip()}")
        raise LayoutGenerationError(
            f"forge inspect {contract} 失败 (exit {result.returncode}): {result.stderr.strip()}"
        )

    return result.stdout
