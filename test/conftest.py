import asyncio
import struct

import pytest
import pytest_asyncio

from aiomodbus_slave.datastore import NodeRegister
from aiomodbus_slave.server.tcp import ModbusTcpServer


def mbap(function_code, payload=b"", unit=1, transaction_id=1, protocol_id=0):
    return struct.pack(">HHHBB", transaction_id, protocol_id, len(payload) + 2, unit, function_code) + payload


class MasterConnection:
    def __init__(self, reader, writer):
        self.reader = reader
        self.writer = writer

    async def send(self, data):
        self.writer.write(data)
        await self.writer.drain()

    async def receive(self, timeout=2):
        header = await asyncio.wait_for(self.reader.readexactly(7), timeout)
        (length,) = struct.unpack(">H", header[4:6])
        body = await asyncio.wait_for(self.reader.readexactly(length - 1), timeout)
        return header + body

    async def transact(self, function_code, payload=b"", **kwargs):
        await self.send(mbap(function_code, payload, **kwargs))
        return await self.receive()

    async def close(self):
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError:
            pass


def make_node(slave_id=1):
    return NodeRegister.create(
        slave_id,
        coils=(0, 100),
        discrete_inputs=(0, 100),
        input_registers=(0, 100),
        holding_registers=(0, 100),
    )


@pytest.fixture
def node():
    return make_node(1)


@pytest_asyncio.fixture
async def server(node):
    srv = ModbusTcpServer(port=0, read_timeout=1.0, write_timeout=1.0)
    srv.add_nodes(node)
    await srv.start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def connect(server):
    connections = []

    async def _connect():
        reader, writer = await asyncio.open_connection(*server.address)
        conn = MasterConnection(reader, writer)
        connections.append(conn)
        return conn

    yield _connect
    for conn in connections:
        await conn.close()
