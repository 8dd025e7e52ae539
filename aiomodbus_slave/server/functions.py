from __future__ import annotations

import typing

from aiomodbus_slave.server import decoders, encoders

if typing.TYPE_CHECKING:
    from aiomodbus_slave.datastore import NodeRegister

READ_COILS = 0x01
READ_DISCRETE_INPUTS = 0x02
READ_HOLDING_REGISTERS = 0x03
READ_INPUT_REGISTERS = 0x04
WRITE_SINGLE_COIL = 0x05
WRITE_SINGLE_REGISTER = 0x06
WRITE_MULTIPLE_COILS = 0x0F
WRITE_MULTIPLE_REGISTERS = 0x10
MASK_WRITE_REGISTER = 0x16
READ_WRITE_MULTIPLE_REGISTERS = 0x17

# Takes the node and the request data following the function code, returns the response data or an awaitable of it.
# Exception responses are raised as ModbusException.
FunctionHandler = typing.Callable[["NodeRegister", bytes], typing.Union[bytes, typing.Awaitable[bytes]]]


def read_coils(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(READ_COILS, data)
    return encoders.pack_byte_count(node.read_coils(request["address"], request["count"]))


def read_discrete_inputs(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(READ_DISCRETE_INPUTS, data)
    return encoders.pack_byte_count(node.read_discretes(request["address"], request["count"]))


def read_holding_registers(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(READ_HOLDING_REGISTERS, data)
    return encoders.pack_byte_count(node.read_holdings_bytes(request["address"], request["count"]))


def read_input_registers(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(READ_INPUT_REGISTERS, data)
    return encoders.pack_byte_count(node.read_inputs_bytes(request["address"], request["count"]))


def write_single_coil(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(WRITE_SINGLE_COIL, data)
    node.write_coils(request["address"], 1, bytes([request["value"]]))
    return encoders.pack_single_coil(request["address"], request["value"])


def write_single_register(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(WRITE_SINGLE_REGISTER, data)
    node.write_holdings_bytes(request["address"], 1, data[2:4])
    return encoders.pack_single_word(request["address"], request["value"])


def write_multiple_coils(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(WRITE_MULTIPLE_COILS, data)
    node.write_coils(request["address"], request["count"], request["values"])
    return encoders.pack_address_count(request["address"], request["count"])


def write_multiple_registers(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(WRITE_MULTIPLE_REGISTERS, data)
    node.write_holdings_bytes(request["address"], request["count"], request["values"])
    return encoders.pack_address_count(request["address"], request["count"])


def read_write_multiple_registers(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(READ_WRITE_MULTIPLE_REGISTERS, data)
    # The write is performed before the read
    node.write_holdings_bytes(request["write_address"], request["write_count"], request["values"])
    return encoders.pack_byte_count(node.read_holdings_bytes(request["read_address"], request["read_count"]))


def mask_write_register(node: NodeRegister, data: bytes) -> bytes:
    request = decoders.from_func_code(MASK_WRITE_REGISTER, data)
    node.mask_write_holding(request["address"], request["and_mask"], request["or_mask"])
    return encoders.pack_mask_write(request["address"], request["and_mask"], request["or_mask"])


def default_functions() -> typing.Dict[int, FunctionHandler]:
    return {
        READ_COILS: read_coils,
        READ_DISCRETE_INPUTS: read_discrete_inputs,
        READ_HOLDING_REGISTERS: read_holding_registers,
        READ_INPUT_REGISTERS: read_input_registers,
        WRITE_SINGLE_COIL: write_single_coil,
        WRITE_SINGLE_REGISTER: write_single_register,
        WRITE_MULTIPLE_COILS: write_multiple_coils,
        WRITE_MULTIPLE_REGISTERS: write_multiple_registers,
        MASK_WRITE_REGISTER: mask_write_register,
        READ_WRITE_MULTIPLE_REGISTERS: read_write_multiple_registers,
    }
