import pytest

import aiomodbus_slave.exceptions
from aiomodbus_slave.exceptions import exception_code


@pytest.mark.parametrize("code,exceptioncls", sorted(aiomodbus_slave.exceptions.modbus_exception_codes.items()))
def test_exception_codes(code, exceptioncls):
    assert exception_code(exceptioncls()) == code
    assert aiomodbus_slave.exceptions.modbus_exceptions_to_codes[exceptioncls] == code


def test_subclass_uses_parent_code():
    class OutOfRange(aiomodbus_slave.exceptions.IllegalDataAddress):
        pass

    assert exception_code(OutOfRange()) == 2


def test_unmapped_exception_is_device_failure():
    assert exception_code(aiomodbus_slave.exceptions.ModbusException()) == 4
