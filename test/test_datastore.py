import pytest

import aiomodbus_slave.exceptions
from aiomodbus_slave.datastore import DataStore, NodeRegister, pack_bits, unpack_bits, init_data_range


@pytest.mark.parametrize(
    "bits,packed",
    [
        ([1], b"\x01"),
        ([0, 1, 0, 0, 0, 0, 0, 0, 1], b"\x02\x01"),
        ([1, 0, 1, 1, 0, 0, 1, 1, 1, 0], b"\xCD\x01"),
        ([], b""),
    ],
)
def test_pack_bits(bits, packed):
    assert pack_bits(bits) == packed
    assert unpack_bits(packed, len(bits)) == bits


def test_datastore_slice_access():
    store = DataStore(init_data_range(10, 5))
    store[10:13] = [1, 2, 3]
    assert store[10:15] == [1, 2, 3, 0, 0]
    assert store[12] == 3


def test_datastore_list_write_at_address():
    store = DataStore(init_data_range(0, 4))
    store[1] = [7, 8]
    assert store[0:4] == [0, 7, 8, 0]


@pytest.mark.parametrize("addr", [4, slice(2, 6), slice(-1, 1)])
def test_datastore_invalid_address(addr):
    store = DataStore(init_data_range(0, 4))
    with pytest.raises(aiomodbus_slave.exceptions.IllegalDataAddress):
        store[addr]


def test_datastore_invalid_write_leaves_buffer():
    store = DataStore(init_data_range(0, 4))
    with pytest.raises(aiomodbus_slave.exceptions.IllegalDataAddress):
        store[3] = [1, 2]
    with pytest.raises(aiomodbus_slave.exceptions.IllegalDataValue):
        store[0] = 0x10000
    assert store[0:4] == [0, 0, 0, 0]


def test_datastore_hooks(mocker):
    store = DataStore(init_data_range(0, 4))
    hook = mocker.Mock()
    default_hook = mocker.Mock()
    store.hooks[2] = hook
    store.default_hook = default_hook
    store[2] = 5
    hook.assert_called_once_with({2: 0}, {2: 5}, store.buffer)
    store[2] = 5
    hook.assert_called_once()
    store[0] = 1
    default_hook.assert_called_once_with({0: 0}, {0: 1}, store.buffer)


def test_datastore_merge_overlap():
    store = DataStore(init_data_range(0, 4))
    store.merge(DataStore(init_data_range(4, 4)))
    assert len(store) == 8
    with pytest.raises(ValueError):
        store.merge(DataStore(init_data_range(7, 2)))


def test_datastore_update_force():
    store = DataStore(init_data_range(0, 2))
    with pytest.raises(ValueError):
        store.update(DataStore(init_data_range(0, 3, 1)))
    store.update(DataStore(init_data_range(0, 3, 1)), force=True)
    assert store == DataStore({0: 1, 1: 1, 2: 1})


@pytest.fixture
def register():
    return NodeRegister.create(
        1,
        coils=(0x13, 0x25),
        discrete_inputs=(0xC4, 0x16),
        input_registers=(0x08, 1),
        holding_registers=(0x6B, 3),
    )


def test_read_write_coils(register):
    register.write_coils(0x13, 0x25, b"\xCD\x6B\xB2\x0E\x1B")
    assert register.read_coils(0x13, 0x25) == b"\xCD\x6B\xB2\x0E\x1B"
    assert register.read_coils(0x13, 3) == b"\x05"


def test_write_coils_short_buffer(register):
    with pytest.raises(aiomodbus_slave.exceptions.IllegalDataValue):
        register.write_coils(0x13, 9, b"\xFF")


def test_read_discretes(register):
    register.write_discretes(0xC4, [0, 0, 1, 1, 0, 1, 0, 1, 1, 1, 0, 1, 1, 0, 1, 1, 1, 0, 1, 0, 1, 1])
    assert register.read_discretes(0xC4, 0x16) == b"\xAC\xDB\x35"


def test_read_write_holdings(register):
    register.write_holdings_bytes(0x6B, 3, b"\xAE\x41\x56\x52\x43\x40")
    assert register.read_holdings(0x6B, 3) == [0xAE41, 0x5652, 0x4340]
    assert register.read_holdings_bytes(0x6C, 2) == b"\x56\x52\x43\x40"


def test_read_inputs(register):
    register.write_inputs(0x08, [0x000A])
    assert register.read_inputs_bytes(0x08, 1) == b"\x00\x0A"


@pytest.mark.parametrize(
    "call",
    [
        lambda r: r.read_coils(0x13, 0x26),
        lambda r: r.read_discretes(0xC3, 1),
        lambda r: r.read_inputs_bytes(0x09, 1),
        lambda r: r.read_holdings_bytes(0x6B, 4),
        lambda r: r.write_holdings_bytes(0x6E, 1, b"\x00\x01"),
        lambda r: r.mask_write_holding(0x6A, 0, 0),
    ],
)
def test_out_of_range(register, call):
    with pytest.raises(aiomodbus_slave.exceptions.IllegalDataAddress):
        call(register)


@pytest.mark.parametrize(
    "before,and_mask,or_mask,after",
    [
        (0x0012, 0x00F2, 0x0025, 0x0017),
        (0x1234, 0x0000, 0xFFFF, 0xFFFF),
        (0x1234, 0xFFFF, 0x0000, 0x1234),
    ],
)
def test_mask_write_holding(register, before, and_mask, or_mask, after):
    register.write_holdings(0x6B, [before])
    register.mask_write_holding(0x6B, and_mask, or_mask)
    assert register.read_holdings(0x6B) == [after]
