"""
Request PDU decoders. Each decoder unpacks the data field following the function code and validates it against
the limits of the Modbus Application Protocol V1.1b3, raising IllegalDataValue before any register is touched.
"""
import struct

from aiomodbus_slave.exceptions import IllegalDataValue

READ_BITS_QUANTITY_MAX = 2000
WRITE_BITS_QUANTITY_MAX = 1968
READ_REGISTERS_QUANTITY_MAX = 125
WRITE_REGISTERS_QUANTITY_MAX = 123
READ_WRITE_READ_QUANTITY_MAX = 125
READ_WRITE_WRITE_QUANTITY_MAX = 121


def _check_length(data: bytes, size: int, exact: bool = True):
    if len(data) < size or (exact and len(data) != size):
        raise IllegalDataValue(f"Invalid data length {len(data)}")


def _check_quantity(count: int, maximum: int):
    if not 1 <= count <= maximum:
        raise IllegalDataValue(f"Quantity {count} out of range 1..{maximum}")


def _unpack_read(data: bytes, maximum: int):
    _check_length(data, 4)
    address, count = struct.unpack(">HH", data)
    _check_quantity(count, maximum)
    return {"address": address, "count": count}


def _unpack_read_bits(data: bytes):
    return _unpack_read(data, READ_BITS_QUANTITY_MAX)


def _unpack_read_registers(data: bytes):
    return _unpack_read(data, READ_REGISTERS_QUANTITY_MAX)


def _unpack_write_single_coil(data: bytes):
    _check_length(data, 4)
    address, value = struct.unpack(">HH", data)
    if value not in (0x0000, 0xFF00):
        raise IllegalDataValue(f"Invalid coil value {value:#06x}")
    return {"address": address, "value": value == 0xFF00}


def _unpack_write_single_word(data: bytes):
    _check_length(data, 4)
    address, value = struct.unpack(">HH", data)
    return {"address": address, "value": value}


def _unpack_write_multiple_bytes(data: bytes):
    _check_length(data, 5, exact=False)
    address, count, size = struct.unpack(">HHB", data[:5])
    _check_quantity(count, WRITE_BITS_QUANTITY_MAX)
    if size != (count + 7) // 8:
        raise IllegalDataValue(f"Byte count {size} does not match {count} coils")
    return {"address": address, "count": count, "size": size, "values": data[5:]}


def _unpack_write_multiple_words(data: bytes):
    _check_length(data, 5, exact=False)
    address, count, size = struct.unpack(">HHB", data[:5])
    _check_quantity(count, WRITE_REGISTERS_QUANTITY_MAX)
    if size != count * 2:
        raise IllegalDataValue(f"Byte count {size} does not match {count} registers")
    return {"address": address, "count": count, "size": size, "values": data[5:]}


def _unpack_read_write_multiple(data: bytes):
    _check_length(data, 9, exact=False)
    read_address, read_count, write_address, write_count, size = struct.unpack(">HHHHB", data[:9])
    _check_quantity(read_count, READ_WRITE_READ_QUANTITY_MAX)
    _check_quantity(write_count, READ_WRITE_WRITE_QUANTITY_MAX)
    if size != write_count * 2:
        raise IllegalDataValue(f"Byte count {size} does not match {write_count} registers")
    return {
        "read_address": read_address,
        "read_count": read_count,
        "write_address": write_address,
        "write_count": write_count,
        "values": data[9:],
    }


def _unpack_mask_write(data: bytes):
    _check_length(data, 6)
    address, and_mask, or_mask = struct.unpack(">HHH", data)
    return {"address": address, "and_mask": and_mask, "or_mask": or_mask}


function_codes = {
    1: _unpack_read_bits,
    2: _unpack_read_bits,
    3: _unpack_read_registers,
    4: _unpack_read_registers,
    5: _unpack_write_single_coil,
    6: _unpack_write_single_word,
    15: _unpack_write_multiple_bytes,
    16: _unpack_write_multiple_words,
    22: _unpack_mask_write,
    23: _unpack_read_write_multiple,
}


def from_func_code(func_code: int, data: bytes) -> dict:
    return function_codes[func_code](data)
