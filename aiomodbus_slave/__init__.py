"""
Modbus TCP slave built on asyncio
Serves the register spaces of any number of slave ids over one listener. Each connection is handled by its own task
which reads one MBAP framed request at a time, dispatches it on the function code and writes the response before
reading the next request.
Source www.modbus.org Modbus_Messaging_Implementation_Guide_V1_0b and Modbus_Application_Protocol_V1_1b3
"""
from aiomodbus_slave.datastore import DataStore, NodeRegister
from aiomodbus_slave.server.registry import SlaveRegistry
from aiomodbus_slave.server.tcp import ModbusTcpServer

__version__ = "0.1.0"

__all__ = ["DataStore", "NodeRegister", "SlaveRegistry", "ModbusTcpServer"]
