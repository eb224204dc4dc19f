#!/usr/bin/env python3
"""
新增字节链上校验单元测试

使用内存中的假读取器模拟链上存储, 测试:
1. 启用条件 (地址 + 读取器)
2. 非零字节检测与每个槽位只读取一次
3. 批量读取 / 并发读取
4. 部分失败时通过 ChainReadError 返回已计算的差异
"""

import sys
import threading
import unittest

from layout_checker.layout_diff import (
    ChainReadError,
    StorageLayoutDiffAdded,
    StorageLayoutDiffType,
    StorageLocation,
    check_added_slots,
    check_layouts,
)
from layout_checker.reporting import format_diff
from layout_checker.storage_layout import build_byte_mapping, parse_layout
from layout_fixtures import basic_reference, find_var, var

ADDRESS = "0x000000000000000000000000000000000000dEaD"


def word_with(byte_values):
    """构造存储字: {offset: value}, offset 0 为最低位字节"""
    word = bytearray(32)
    for offset, value in byte_values.items():
        word[31 - offset] = value
    return bytes(word)


class FakeReader:
    """按槽位返回预设存储字的读取器"""

    def __init__(self, words=None, failing=()):
        self.words = words or {}
        self.failing = set(failing)
        self.calls = []
        self._lock = threading.Lock()

    def read(self, address, slot):
        with self._lock:
            self.calls.append(slot)
        if slot in self.failing:
            raise ChainReadError(f"读取存储槽 {hex(slot)} 失败", slot=slot)
        return self.words.get(slot, bytes(32))


class FakeBatchReader(FakeReader):
    """支持 read_many 的读取器"""

    def __init__(self, words=None, failing=()):
        super().__init__(words, failing)
        self.batches = []

    def read_many(self, address, slots):
        slots = list(slots)
        self.batches.append(slots)
        words = {slot: self.words.get(slot, bytes(32)) for slot in slots if slot not in self.failing}
        if len(words) < len(slots):
            failed = [slot for slot in slots if slot not in words]
            raise ChainReadError("批量读取部分失败", slot=failed[0], failed_slots=failed, words=words)
        return words


def _extended_layouts():
    """参考布局 + 在slot 55新增 newValue(uint64) 和 flag(bool), slot 56新增 counter(uint256)"""
    src = basic_reference()
    cmp = basic_reference()
    cmp["storage"].extend([
        var("newValue", "t_uint64", 55, 0),
        var("flag", "t_bool", 55, 8),
        var("counter", "t_uint256", 56),
    ])
    return parse_layout(src), parse_layout(cmp)


class TestCheckAddedSlots(unittest.TestCase):
    """测试新增字节校验"""

    def setUp(self):
        self.src, self.cmp = _extended_layouts()

    def test_disabled_without_address_or_reader(self):
        reader = FakeReader({55: word_with({0: 1})})

        self.assertEqual(check_layouts(self.src, self.cmp, reader=reader), [])
        self.assertEqual(check_layouts(self.src, self.cmp, address=ADDRESS), [])
        self.assertEqual(reader.calls, [])

    def test_all_zero(self):
        reader = FakeReader()
        self.assertEqual(check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader), [])
        self.assertEqual(sorted(reader.calls), [55, 56])

    def test_non_zero_byte(self):
        """测试新增变量所在字节非零"""
        reader = FakeReader({55: word_with({0: 0x2a})})

        diffs = check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        self.assertEqual(len(diffs), 1)
        self.assertEqual(diffs[0].type, StorageLayoutDiffType.NON_ZERO_ADDED_SLOT)
        self.assertEqual(diffs[0].location, StorageLocation(55, 0))
        self.assertEqual(diffs[0].value, "2a")
        self.assertEqual(diffs[0].cmp.label, "newValue")
        self.assertEqual(
            format_diff(diffs[0]).message,
            f'variable "newValue" of type "uint64" was added at a non-zero storage byte '
            f'(storage slot 0x{55:064x}, byte #0: 0x2a)'
        )

    def test_one_diff_per_variable(self):
        """测试同一变量多个非零字节只报告第一个"""
        reader = FakeReader({55: word_with({1: 0x01, 3: 0xff, 8: 0x01})})

        diffs = check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        self.assertEqual(
            [(d.cmp.label, d.location, d.value) for d in diffs],
            [
                ("newValue", StorageLocation(55, 1), "01"),
                ("flag", StorageLocation(55, 8), "01"),
            ]
        )

    def test_each_slot_read_once(self):
        reader = FakeReader({56: word_with({31: 0x80})})

        diffs = check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        self.assertEqual(sorted(reader.calls), [55, 56])
        self.assertEqual(diffs[0].location, StorageLocation(56, 31))
        self.assertEqual(diffs[0].value, "80")

    def test_engine_diffs_come_first(self):
        """测试布局差异在链上校验差异之前"""
        src = basic_reference()
        cmp = basic_reference()
        find_var(cmp, "_initializing")["label"] = "_initialization"
        cmp["storage"].append(var("newValue", "t_uint64", 55))
        reader = FakeReader({55: word_with({0: 1})})

        diffs = check_layouts(parse_layout(src), parse_layout(cmp), address=ADDRESS, reader=reader)

        self.assertEqual(
            [d.type for d in diffs],
            [StorageLayoutDiffType.LABEL, StorageLayoutDiffType.NON_ZERO_ADDED_SLOT]
        )

    def test_gap_bytes_are_checked(self):
        """测试占用 __gap 的新变量也做链上校验"""
        src = basic_reference()
        cmp = basic_reference()
        cmp["storage"].insert(2, var("added", "t_uint8", 1))
        gap = find_var(cmp, "__gap")
        gap["slot"] = "2"
        gap["type"] = "t_array(t_uint256)49_storage"
        reader = FakeReader({1: word_with({0: 7})})

        diffs = check_layouts(parse_layout(src), parse_layout(cmp), address=ADDRESS, reader=reader)

        self.assertEqual([d.cmp.label for d in diffs], ["added"])
        self.assertEqual(diffs[0].value, "07")

    def test_batch_reader(self):
        """测试读取器支持 read_many 时使用单次批量请求"""
        reader = FakeBatchReader({55: word_with({8: 1})})

        diffs = check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        self.assertEqual(reader.batches, [[55, 56]])
        self.assertEqual(reader.calls, [])
        self.assertEqual([d.cmp.label for d in diffs], ["flag"])

    def test_concurrent_reads(self):
        """测试多线程读取结果与顺序读取一致"""
        words = {55: word_with({0: 1}), 56: word_with({0: 2})}
        sequential = check_layouts(self.src, self.cmp, address=ADDRESS, reader=FakeReader(words))

        reader = FakeReader(words)
        concurrent = check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader, max_workers=4)

        self.assertEqual(concurrent, sequential)
        self.assertEqual(sorted(reader.calls), [55, 56])

    def test_direct_candidates(self):
        """测试直接传入候选字节 (未排序)"""
        detail = build_byte_mapping(self.cmp)[56 * 32]
        added = [
            StorageLayoutDiffAdded(location=StorageLocation(56, 2), cmp=detail),
            StorageLayoutDiffAdded(location=StorageLocation(56, 1), cmp=detail),
        ]
        reader = FakeReader({56: word_with({1: 0x10, 2: 0x20})})

        diffs = check_added_slots(added, ADDRESS, reader)

        self.assertEqual(len(diffs), 1)
        self.assertEqual(diffs[0].location, StorageLocation(56, 1))
        self.assertEqual(diffs[0].value, "10")
        self.assertEqual(reader.calls, [56])

    def test_no_candidates(self):
        reader = FakeReader()
        self.assertEqual(check_added_slots([], ADDRESS, reader), [])
        self.assertEqual(reader.calls, [])


class TestPartialFailure(unittest.TestCase):
    """测试部分槽位读取失败"""

    def setUp(self):
        self.src, self.cmp = _extended_layouts()

    def test_partial_results_in_error(self):
        reader = FakeReader({55: word_with({0: 5})}, failing=[56])

        with self.assertRaises(ChainReadError) as ctx:
            check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        error = ctx.exception
        self.assertEqual(error.failed_slots, [56])
        self.assertEqual([d.cmp.label for d in error.diffs], ["newValue"])

    def test_engine_diffs_prepended(self):
        """测试异常中包含布局对比差异"""
        src = basic_reference()
        cmp = basic_reference()
        find_var(cmp, "_owner")["type"] = "t_uint192"
        cmp["storage"].append(var("newValue", "t_uint64", 55))
        reader = FakeReader(failing=[55])

        with self.assertRaises(ChainReadError) as ctx:
            check_layouts(parse_layout(src), parse_layout(cmp), address=ADDRESS, reader=reader)

        self.assertEqual([d.type for d in ctx.exception.diffs], [StorageLayoutDiffType.VARIABLE_TYPE])

    def test_batch_partial_failure(self):
        reader = FakeBatchReader({55: word_with({0: 5})}, failing=[56])

        with self.assertRaises(ChainReadError) as ctx:
            check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader)

        self.assertEqual(ctx.exception.failed_slots, [56])
        self.assertEqual([d.value for d in ctx.exception.diffs], ["05"])

    def test_concurrent_partial_failure(self):
        reader = FakeReader(failing=[55, 56])

        with self.assertRaises(ChainReadError) as ctx:
            check_layouts(self.src, self.cmp, address=ADDRESS, reader=reader, max_workers=2)

        self.assertEqual(ctx.exception.failed_slots, [55, 56])
        self.assertEqual(ctx.exception.diffs, [])


def run_tests():
    """运行所有测试"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestCheckAddedSlots))
    suite.addTests(loader.loadTestsFromTestCase(TestPartialFailure))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    return result.wasSuccessful()


if __name__ == "__main__":
    success = run_tests()
    sys.exit(0 if success else 1)
