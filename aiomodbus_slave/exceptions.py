class ModbusException(Exception):
    pass


class RequestException(ValueError, ModbusException):
    pass


class IllegalFunction(RequestException, ModbusException):
    pass


class IllegalDataAddress(RequestException, ModbusException):
    pass


class IllegalDataValue(RequestException, ModbusException):
    pass


class MemoryParityError(IOError, ModbusException):
    pass


class SlaveDeviceFailure(IOError, ModbusException):
    pass


class AcknowledgeError(IOError, ModbusException):
    pass


class DeviceBusy(IOError, ModbusException):
    pass


class NegativeAcknowledgeError(IOError, ModbusException):
    pass


class GatewayPathUnavailable(IOError, ModbusException):
    pass


class GatewayDeviceFailedToRespond(IOError, ModbusException):
    pass


class UnknownSlave(LookupError):
    """
    No node is registered for the requested slave id. Requests for unknown slaves are dropped without a reply.
    """


class FrameError(IOError):
    """
    The MBAP header declares a length the server can not frame.
    """


class ConnectionClosed(ConnectionError):
    pass


modbus_exception_codes = {
    1: IllegalFunction,
    2: IllegalDataAddress,
    3: IllegalDataValue,
    4: SlaveDeviceFailure,
    5: AcknowledgeError,
    6: DeviceBusy,
    7: NegativeAcknowledgeError,
    8: MemoryParityError,
    10: GatewayPathUnavailable,
    11: GatewayDeviceFailedToRespond,
}

modbus_exceptions_to_codes = {
    IllegalFunction: 1,
    IllegalDataAddress: 2,
    IllegalDataValue: 3,
    SlaveDeviceFailure: 4,
    AcknowledgeError: 5,
    DeviceBusy: 6,
    NegativeAcknowledgeError: 7,
    MemoryParityError: 8,
    GatewayPathUnavailable: 10,
    GatewayDeviceFailedToRespond: 11,
}


def exception_code(exception: ModbusException) -> int:
    """
    Resolve the exception code sent on the wire for a raised modbus exception.
    Subclasses of the standard exceptions map to their parent's code.
    :param exception: Raised exception
    :return: Exception code, SlaveDeviceFailure if the class is not mapped
    """
    for cls in type(exception).__mro__:
        try:
            return modbus_exceptions_to_codes[cls]
        except KeyError:
            continue
    return modbus_exceptions_to_codes[SlaveDeviceFailure]
