#!/usr/bin/env python3
"""
配置加载单元测试

测试:
1. layout_checker.toml 加载与取值校验
2. 环境变量覆盖
3. foundry.toml RPC端点别名解析
"""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from layout_checker.config import (
    ENV_ADDRESS,
    ENV_RPC_URL,
    CheckerConfig,
    ConfigError,
    load_config,
    load_rpc_endpoints,
    resolve_rpc_url,
)


class ConfigTestCase(unittest.TestCase):
    """在临时目录中写配置文件, 并隔离环境变量"""

    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmpdir.name)

        env = mock.patch.dict(os.environ)
        env.start()
        self.addCleanup(env.stop)
        os.environ.pop(ENV_RPC_URL, None)
        os.environ.pop(ENV_ADDRESS, None)

    def tearDown(self):
        self._tmpdir.cleanup()

    def write(self, name, content):
        path = self.tmpdir / name
        path.write_text(content, encoding="utf-8")
        return path


class TestLoadConfig(ConfigTestCase):
    """测试配置文件加载"""

    def test_defaults(self):
        config = load_config(self.write("empty.toml", ""))

        self.assertEqual(config, CheckerConfig())
        self.assertFalse(config.check_removals)
        self.assertEqual(config.max_workers, 1)
        self.assertFalse(config.chain_check_enabled)

    def test_values(self):
        path = self.write("layout_checker.toml", """
[layout_checker]
check_removals = true
address = "0x000000000000000000000000000000000000dEaD"
rpc_url = "https://eth.example.org"
block = 19000000
max_workers = 4
rpc_retry_delay = 0.5
log_level = "DEBUG"
""")
        config = load_config(path)

        self.assertTrue(config.check_removals)
        self.assertEqual(config.block, 19000000)
        self.assertEqual(config.max_workers, 4)
        self.assertEqual(config.rpc_retry_delay, 0.5)
        self.assertEqual(config.log_level, "DEBUG")
        self.assertTrue(config.chain_check_enabled)

    def test_missing_explicit_file(self):
        with self.assertRaises(ConfigError):
            load_config(self.tmpdir / "missing.toml")

    def test_invalid_toml(self):
        with self.assertRaises(ConfigError):
            load_config(self.write("bad.toml", "[layout_checker\nmax_workers = "))

    def test_wrong_type(self):
        with self.assertRaises(ConfigError):
            load_config(self.write("bad.toml", '[layout_checker]\nmax_workers = "four"\n'))

    def test_bool_for_number(self):
        with self.assertRaises(ConfigError):
            load_config(self.write("bad.toml", "[layout_checker]\nrpc_timeout = true\n"))

    def test_max_workers_must_be_positive(self):
        with self.assertRaises(ConfigError):
            load_config(self.write("bad.toml", "[layout_checker]\nmax_workers = 0\n"))

    def test_unknown_key_warns(self):
        path = self.write("layout_checker.toml", "[layout_checker]\ncolor = true\n")
        with self.assertLogs("layout_checker.config", level="WARNING"):
            config = load_config(path)
        self.assertEqual(config, CheckerConfig())

    def test_env_override(self):
        path = self.write("layout_checker.toml", '[layout_checker]\nrpc_url = "https://file.example.org"\n')
        os.environ[ENV_RPC_URL] = "https://env.example.org"
        os.environ[ENV_ADDRESS] = "0x000000000000000000000000000000000000dEaD"

        config = load_config(path)

        self.assertEqual(config.rpc_url, "https://env.example.org")
        self.assertEqual(config.address, "0x000000000000000000000000000000000000dEaD")


class TestRpcEndpoints(ConfigTestCase):
    """测试foundry.toml RPC端点别名"""

    FOUNDRY_TOML = """
[profile.default]
src = "src"

[rpc_endpoints]
mainnet = "https://eth-mainnet.example.org/v2/${ALCHEMY_KEY}"
local = "http://127.0.0.1:8545"
"""

    def setUp(self):
        super().setUp()
        self.foundry_toml = self.write("foundry.toml", self.FOUNDRY_TOML)

    def test_load_endpoints(self):
        endpoints = load_rpc_endpoints(self.foundry_toml)
        self.assertEqual(set(endpoints), {"mainnet", "local"})

    def test_missing_foundry_toml(self):
        self.assertEqual(load_rpc_endpoints(self.tmpdir / "none.toml"), {})

    def test_resolve_alias(self):
        os.environ["ALCHEMY_KEY"] = "secret"
        self.assertEqual(
            resolve_rpc_url("mainnet", self.foundry_toml),
            "https://eth-mainnet.example.org/v2/secret"
        )
        self.assertEqual(resolve_rpc_url("local", self.foundry_toml), "http://127.0.0.1:8545")

    def test_url_passthrough(self):
        self.assertEqual(resolve_rpc_url("https://rpc.example.org", self.foundry_toml), "https://rpc.example.org")
        self.assertIsNone(resolve_rpc_url(None, self.foundry_toml))

    def test_unknown_alias(self):
        with self.assertRaises(ConfigError):
            resolve_rpc_url("sepolia", self.foundry_toml)


def run_tests():
    """运行所有测试"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestLoadConfig))
    suite.addTests(loader.loadTestsFromTestCase(TestRpcEndpoints))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
