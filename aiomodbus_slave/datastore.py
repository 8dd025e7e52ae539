from __future__ import annotations

import struct
import threading
import typing
from dataclasses import dataclass, field

from aiomodbus_slave.exceptions import IllegalDataAddress, IllegalDataValue

BIT_MAX = 0x1
WORD_MAX = 0xFFFF


def slice_range(slic: slice) -> range:
    return range(*(x for x in [slic.start, slic.stop, slic.step] if x is not None))


def check_value(value: int, max_value: int) -> int:
    if not isinstance(value, int) or (value & max_value) != value:
        raise IllegalDataValue(f"Value {value!r} out of range 0..{max_value}")
    return value


def init_data_range(start, count, default=0) -> dict:
    return {x: default for x in range(start, start + count)}


def pack_bits(bits: typing.Sequence[int]) -> bytes:
    """
    Pack bits into bytes, first bit in the least significant position of the first byte
    """
    packed = bytearray((len(bits) + 7) // 8)
    for ind, bit in enumerate(bits):
        if bit:
            packed[ind // 8] |= 1 << (ind % 8)
    return bytes(packed)


def unpack_bits(data: bytes, count: int) -> typing.List[int]:
    return [(data[ind // 8] >> (ind % 8)) & 1 for ind in range(count)]


@dataclass
class DataStore:
    """
    A single modbus address space mapping addresses to bit or word values
    """

    buffer: dict = field(default_factory=dict)
    hooks: typing.Dict[int, typing.Callable[[dict, dict, dict], None]] = field(
        default_factory=dict
    )
    default_hook: typing.Optional[typing.Callable] = None
    max_value: int = WORD_MAX

    def __getitem__(self, addr: typing.Union[int, slice]):
        """
        :param addr: Address int or slice of addresses to return
        :return: Value or list of values
        :raises IllegalDataAddress: If any of the addresses are not part of the space
        """
        if isinstance(addr, int):
            addrs = [addr]
        elif isinstance(addr, slice):
            addrs = slice_range(addr)
        else:
            raise KeyError("Address has unsupported type")
        try:
            values = [self.buffer[i] for i in addrs]
        except KeyError as e:
            raise IllegalDataAddress(f"Invalid Address {e.args[0]}") from e
        return values[0] if isinstance(addr, int) else values

    def __setitem__(
        self,
        key: typing.Union[int, slice],
        value: typing.Union[int, typing.List[int], tuple],
    ):
        if isinstance(key, slice):
            addrs = list(slice_range(key))
            if len(addrs) != len(value):
                raise IllegalDataValue(f"Invalid value length for key {value}")
            current = dict(zip(addrs, value))
        elif isinstance(value, list) or isinstance(value, tuple):
            addrs = list(range(key, key + len(value)))
            current = dict(zip(addrs, value))
        else:
            addrs = [key]
            current = {key: value}
        missing = set(addrs).difference(self.buffer)
        if missing:
            raise IllegalDataAddress(f"Invalid Addresses {sorted(missing)}")
        for val in current.values():
            check_value(val, self.max_value)
        previous = {addr: self.buffer[addr] for addr in addrs}
        if current != previous:
            self.buffer.update(current)
            self._run_hooks(previous, current)

    def _run_hooks(self, previous: dict, current: dict):
        changed = {addr for addr in current if current[addr] != previous[addr]}
        addrs = set(self.hooks).intersection(changed)
        hooks = {self.hooks[addr] for addr in addrs}
        if hooks:
            for hook in hooks:
                hook(previous, current, self.buffer)
        elif self.default_hook:
            self.default_hook(previous, current, self.buffer)

    def __contains__(self, item: int):
        return item in self.buffer

    def __bool__(self):
        return bool(self.buffer)

    def __len__(self):
        return len(self.buffer)

    def __eq__(self, another: DataStore):
        """
        Used for tests to compare the buffers of two address spaces.

        :param another: Address space to compare buffers with
        :returns: True if buffers are equal, False otherwise
        """
        return self.buffer == another.buffer

    def merge(self, addr: DataStore):
        """
        Merges another address space into this existing address space

        :param addr: Address space to merge into the selected space.
        """
        overlap = set(self.buffer.keys()).intersection(set(addr.buffer.keys()))
        if overlap:
            raise ValueError(
                "Cannot join DataStore with overlapping addresses: {}".format(overlap)
            )

        self.buffer.update(addr.buffer)

    def update(self, addr: DataStore, force: bool = False):
        """
        Updates this address space with the values of another

        :param addr: Address space to update the selected space with.
        :param force: If true new addresses are added to the space. If false the space will not update if keys in
        the new space did not exist in the base. Defaults to false.
        """
        if not force and set(addr.buffer).difference(set(self.buffer)):
            raise ValueError(
                "Cannot add new keys to the data store. If you require this functionality enable the force option."
            )
        self.buffer.update(addr.buffer)

    def __repr__(self):
        return f"DataStore: {self.buffer}"

    def copy(self):
        return DataStore(dict(self.buffer), dict(self.hooks), self.default_hook, self.max_value)


def bit_store(start: int = 0, count: int = 0) -> DataStore:
    return DataStore(init_data_range(start, count), max_value=BIT_MAX)


def word_store(start: int = 0, count: int = 0) -> DataStore:
    return DataStore(init_data_range(start, count), max_value=WORD_MAX)


@dataclass
class NodeRegister:
    """
    Register backend of one slave device. Holds four independent address spaces which are range checked on every
    access. Out of range requests raise IllegalDataAddress which the server sends back as an exception response.
    """

    slave_id: int
    coils: DataStore = field(default_factory=bit_store)
    discrete_inputs: DataStore = field(default_factory=bit_store)
    input_registers: DataStore = field(default_factory=word_store)
    holding_registers: DataStore = field(default_factory=word_store)

    def __post_init__(self):
        self.lock = threading.RLock()

    @classmethod
    def create(
        cls,
        slave_id: int,
        coils: typing.Tuple[int, int] = (0, 0),
        discrete_inputs: typing.Tuple[int, int] = (0, 0),
        input_registers: typing.Tuple[int, int] = (0, 0),
        holding_registers: typing.Tuple[int, int] = (0, 0),
    ) -> NodeRegister:
        """
        Create a node with zeroed address spaces
        :param slave_id: Slave id the node answers to
        :param coils: (start address, quantity) of the coils
        :param discrete_inputs: (start address, quantity) of the discrete inputs
        :param input_registers: (start address, quantity) of the input registers
        :param holding_registers: (start address, quantity) of the holding registers
        :return:
        """
        return cls(
            slave_id,
            bit_store(*coils),
            bit_store(*discrete_inputs),
            word_store(*input_registers),
            word_store(*holding_registers),
        )

    def read_coils(self, address: int, quantity: int) -> bytes:
        with self.lock:
            return pack_bits(self.coils[address:address + quantity])

    def read_discretes(self, address: int, quantity: int) -> bytes:
        with self.lock:
            return pack_bits(self.discrete_inputs[address:address + quantity])

    def write_coils(self, address: int, quantity: int, packed: bytes):
        if len(packed) * 8 < quantity:
            raise IllegalDataValue(f"{len(packed)} bytes can not hold {quantity} coils")
        with self.lock:
            self.coils[address:address + quantity] = unpack_bits(packed, quantity)

    def read_holdings_bytes(self, address: int, quantity: int) -> bytes:
        with self.lock:
            values = self.holding_registers[address:address + quantity]
        return struct.pack(">" + "H" * quantity, *values)

    def read_inputs_bytes(self, address: int, quantity: int) -> bytes:
        with self.lock:
            values = self.input_registers[address:address + quantity]
        return struct.pack(">" + "H" * quantity, *values)

    def write_holdings_bytes(self, address: int, quantity: int, data: bytes):
        if len(data) < quantity * 2:
            raise IllegalDataValue(f"{len(data)} bytes can not hold {quantity} registers")
        values = struct.unpack_from(">" + "H" * quantity, data)
        with self.lock:
            self.holding_registers[address:address + quantity] = values

    def mask_write_holding(self, address: int, and_mask: int, or_mask: int):
        with self.lock:
            current = self.holding_registers[address]
            self.holding_registers[address] = (current & and_mask) | (or_mask & ~and_mask & WORD_MAX)

    # Application side access, also covering the spaces masters can only read

    def read_coil_bits(self, address: int, quantity: int = 1) -> typing.List[int]:
        with self.lock:
            return self.coils[address:address + quantity]

    def write_discretes(self, address: int, bits: typing.Sequence[int]):
        with self.lock:
            self.discrete_inputs[address] = [int(bool(b)) for b in bits]

    def read_holdings(self, address: int, quantity: int = 1) -> typing.List[int]:
        with self.lock:
            return self.holding_registers[address:address + quantity]

    def write_holdings(self, address: int, values: typing.Sequence[int]):
        with self.lock:
            self.holding_registers[address] = list(values)

    def write_inputs(self, address: int, values: typing.Sequence[int]):
        with self.lock:
            self.input_registers[address] = list(values)
