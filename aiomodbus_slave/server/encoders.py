import struct


def pack_byte_count(values: bytes) -> bytes:
    return struct.pack(">B", len(values)) + values


def pack_address_count(address: int, count: int) -> bytes:
    return struct.pack(">HH", address, count)


def pack_single_coil(address: int, value: bool) -> bytes:
    return struct.pack(">HH", address, 0xFF00 if value else 0x0000)


def pack_single_word(address: int, value: int) -> bytes:
    return struct.pack(">HH", address, value)


def pack_mask_write(address: int, and_mask: int, or_mask: int) -> bytes:
    return struct.pack(">HHH", address, and_mask, or_mask)


def pack_header(transaction_id: int, protocol_id: int, unit: int, function_code: int, pdu_length: int) -> bytes:
    """
    MBAP header followed by the function code. The length field counts the unit id, function code and payload.
    """
    return struct.pack(">HHHBB", transaction_id, protocol_id, pdu_length + 2, unit, function_code)
