"""
检查器配置

从TOML配置文件的 [layout_checker] 表加载配置:

    [layout_checker]
    check_removals = true
    address = "0x..."
    rpc_url = "mainnet"      # 可以是foundry.toml中 [rpc_endpoints] 的别名
    max_workers = 4

环境变量 LAYOUT_CHECKER_RPC_URL / LAYOUT_CHECKER_ADDRESS 优先于配置文件。
"""

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Union

import toml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "layout_checker.toml"
CONFIG_SECTION = "layout_checker"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

ENV_RPC_URL = "LAYOUT_CHECKER_RPC_URL"
ENV_ADDRESS = "LAYOUT_CHECKER_ADDRESS"


class ConfigError(ValueError):
    """配置文件无法读取或取值非法"""
    pass


@dataclass
class CheckerConfig:
    """检查器配置"""
    check_removals: bool = False
    address: Optional[str] = None
    rpc_url: Optional[str] = None
    block: Union[str, int] = "latest"
    rpc_timeout: int = 30
    rpc_retry_times: int = 3
    rpc_retry_delay: float = 2
    max_workers: int = 1
    forge_timeout: int = 300
    log_level: str = "INFO"

    @property
    def chain_check_enabled(self) -> bool:
        return bool(self.address and self.rpc_url)


# 各配置项允许的取值类型
_FIELD_TYPES = {
    'check_removals': (bool,),
    'address': (str,),
    'rpc_url': (str,),
    'block': (str, int),
    'rpc_timeout': (int,),
    'rpc_retry_times': (int,),
    'rpc_retry_delay': (int, float),
    'max_workers': (int,),
    'forge_timeout': (int,),
    'log_level': (str,),
}


def _validate(key: str, value):
    expected = _FIELD_TYPES[key]
    # bool 是 int 的子类, 数值字段不接受 true/false
    if isinstance(value, bool) and bool not in expected:
        raise ConfigError(f"配置项 {key} 类型错误: {value!r}")
    if not isinstance(value, expected):
        raise ConfigError(f"配置项 {key} 类型错误: {value!r}")
    if key in ('max_workers', 'rpc_retry_times') and value < 1:
        raise ConfigError(f"配置项 {key} 必须 >= 1: {value}")
    return value


def _read_toml(path: Path) -> Dict:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as e:
        raise ConfigError(f"读取配置文件失败 {path}: {e}") from e


def load_rpc_endpoints(foundry_toml_path: Union[str, Path]) -> Dict[str, str]:
    """从foundry.toml加载RPC端点别名"""
    path = Path(foundry_toml_path)
    if not path.exists():
        return {}

    endpoints = _read_toml(path).get('rpc_endpoints', {})
    logger.debug(f"加载了 {len(endpoints)} 个RPC端点: {path}")
    return endpoints


def resolve_rpc_url(rpc_url: Optional[str], foundry_toml_path: Union[str, Path] = "foundry.toml") -> Optional[str]:
    """
    解析RPC地址

    非URL形式的值视为foundry.toml中 [rpc_endpoints] 的别名;
    地址中的 ${VAR} 用环境变量展开。
    """
    if not rpc_url:
        return None

    if '://' not in rpc_url:
        endpoints = load_rpc_endpoints(foundry_toml_path)
        if rpc_url not in endpoints:
            raise ConfigError(f"未知的RPC端点别名: {rpc_url}")
        rpc_url = endpoints[rpc_url]

    return os.path.expandvars(rpc_url)


def load_config(path: Optional[Union[str, Path]] = None) -> CheckerConfig:
    """
    加载配置

    Args:
        path: 配置文件路径; 为空时尝试当前目录的 layout_checker.toml, 不存在则使用默认值

    Returns:
        CheckerConfig

    Raises:
        ConfigError: 指定的配置文件不存在、无法解析或取值非法
    """
    values = {}

    if path is not None and not Path(path).exists():
        raise ConfigError(f"配置文件不存在: {path}")

    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    if config_path.exists():
        section = _read_toml(config_path).get(CONFIG_SECTION, {})
        if not isinstance(section, dict):
            raise ConfigError(f"[{CONFIG_SECTION}] 必须是表")

        known = {f.name for f in fields(CheckerConfig)}
        for key, value in section.items():
            if key not in known:
                logger.warning(f"忽略未知配置项: {key}")
                continue
            values[key] = _validate(key, value)

        logger.info(f"加载配置: {config_path}")

    if os.environ.get(ENV_RPC_URL):
        values['rpc_url'] = os.environ[ENV_RPC_URL]
    if os.environ.get(ENV_ADDRESS):
        values['address'] = os.environ[ENV_ADDRESS]

    return CheckerConfig(**values)
