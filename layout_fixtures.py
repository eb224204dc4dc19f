"""
测试用存储布局报告

模拟 `forge inspect <contract> storage-layout --json` 的输出结构,
按需复制并修改参考布局构造各种升级场景。
"""

import copy

CONTRACT = "src/Storage.sol:Storage"


def var(label, type_id, slot, offset=0, ast_id=1):
    """构造一个存储变量 (slot 按forge习惯使用十进制字符串)"""
    return {
        "astId": ast_id,
        "contract": CONTRACT,
        "label": label,
        "offset": offset,
        "slot": str(slot),
        "type": type_id,
    }


def inplace(label, number_of_bytes, **extra):
    entry = {"encoding": "inplace", "label": label, "numberOfBytes": str(number_of_bytes)}
    entry.update(extra)
    return entry


def mapping(key, value, label):
    return {"encoding": "mapping", "key": key, "label": label, "numberOfBytes": "32", "value": value}


def dynamic_array(base, label):
    return {"base": base, "encoding": "dynamic_array", "label": label, "numberOfBytes": "32"}


ELEMENTARY_TYPES = {
    "t_bool": inplace("bool", 1),
    "t_uint8": inplace("uint8", 1),
    "t_uint16": inplace("uint16", 2),
    "t_uint32": inplace("uint32", 4),
    "t_uint64": inplace("uint64", 8),
    "t_uint128": inplace("uint128", 16),
    "t_uint192": inplace("uint192", 24),
    "t_uint256": inplace("uint256", 32),
    "t_address": inplace("address", 20),
    "t_array(t_uint256)50_storage": inplace("uint256[50]", 1600, base="t_uint256"),
    "t_array(t_uint256)49_storage": inplace("uint256[49]", 1568, base="t_uint256"),
    "t_contract(IERC20)123": inplace("contract IERC20", 20),
    "t_mapping(t_address,t_uint256)": mapping("t_address", "t_uint256", "mapping(address => uint256)"),
    "t_mapping(t_uint256,t_uint256)": mapping("t_uint256", "t_uint256", "mapping(uint256 => uint256)"),
    "t_mapping(t_address,t_address)": mapping("t_address", "t_address", "mapping(address => address)"),
    "t_array(t_uint256)dyn_storage": dynamic_array("t_uint256", "uint256[]"),
    "t_array(t_uint128)dyn_storage": dynamic_array("t_uint128", "uint128[]"),
}


def basic_reference():
    """
    参考布局 (类似 OpenZeppelin Initializable + Ownable):

        slot 0      _initialized (uint8, offset 0), _initializing (bool, offset 1)
        slot 1-50   __gap (uint256[50])
        slot 51     _owner (address)
        slot 52     balances (mapping(address => uint256))
        slot 53     values (uint256[])
        slot 54     token (IERC20)
    """
    return {
        "storage": [
            var("_initialized", "t_uint8", 0, 0),
            var("_initializing", "t_bool", 0, 1),
            var("__gap", "t_array(t_uint256)50_storage", 1),
            var("_owner", "t_address", 51),
            var("balances", "t_mapping(t_address,t_uint256)", 52),
            var("values", "t_array(t_uint256)dyn_storage", 53),
            var("token", "t_contract(IERC20)123", 54),
        ],
        "types": copy.deepcopy(ELEMENTARY_TYPES),
    }


STRUCT_TYPE = "t_struct(Struct)10_storage"
STRUCT_MAPPING_TYPE = "t_mapping(t_uint256,t_struct(Struct)10_storage)"


def struct_type(members, slots, label="struct Storage.Struct"):
    return {
        "encoding": "inplace",
        "label": label,
        "members": members,
        "numberOfBytes": str(slots * 32),
    }


def struct_reference():
    """
    Struct参考布局:

        struct Struct { uint256 a; uint256 b; uint32 c; uint32 d; }

        slot 0-2    myStruct (Struct)
        slot 3-9    __gap (uint256[7])
        slot 10     structs (mapping(uint256 => Struct))
    """
    types = copy.deepcopy(ELEMENTARY_TYPES)
    types["t_array(t_uint256)7_storage"] = inplace("uint256[7]", 224, base="t_uint256")
    types["t_array(t_uint256)6_storage"] = inplace("uint256[6]", 192, base="t_uint256")
    types[STRUCT_TYPE] = struct_type(
        [
            var("a", "t_uint256", 0),
            var("b", "t_uint256", 1),
            var("c", "t_uint32", 2, 0),
            var("d", "t_uint32", 2, 4),
        ],
        3,
    )
    types[STRUCT_MAPPING_TYPE] = mapping("t_uint256", STRUCT_TYPE, "mapping(uint256 => struct Storage.Struct)")

    return {
        "storage": [
            var("myStruct", STRUCT_TYPE, 0),
            var("__gap", "t_array(t_uint256)7_storage", 3),
            var("structs", STRUCT_MAPPING_TYPE, 10),
        ],
        "types": types,
    }


def find_var(report, label):
    """按label查找顶层变量 (返回可修改的dict)"""
    for variable in report["storage"]:
        if variable["label"] == label:
            return variable
    raise KeyError(label)
