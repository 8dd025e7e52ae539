from __future__ import annotations

import asyncio
import enum
import inspect
import logging
import struct
import typing
from dataclasses import dataclass, field

from aiomodbus_slave.exceptions import (
    ConnectionClosed,
    FrameError,
    IllegalFunction,
    ModbusException,
    UnknownSlave,
    exception_code,
)
from aiomodbus_slave.server import encoders
from aiomodbus_slave.server.functions import FunctionHandler, default_functions
from aiomodbus_slave.server.pool import AduPool
from aiomodbus_slave.server.registry import SlaveRegistry

if typing.TYPE_CHECKING:
    from aiomodbus_slave.datastore import NodeRegister

log = logging.getLogger(__file__)

TCP_PROTOCOL_IDENTIFIER = 0x0000
TCP_HEADER_MBAP_SIZE = 7
DEFAULT_READ_TIMEOUT = 60.0
DEFAULT_WRITE_TIMEOUT = 1.0


def is_transient_io_error(exc: BaseException) -> bool:
    """
    Transient errors are retried on the same connection, everything else ends it.
    """
    return isinstance(exc, (BlockingIOError, InterruptedError))


class FrameState(enum.Enum):
    AWAIT_HEADER = enum.auto()
    AWAIT_BODY = enum.auto()
    DISPATCH = enum.auto()
    ERROR = enum.auto()


@dataclass
class RequestPacket:
    transaction_id: int
    protocol_id: int
    length: int
    unit: int
    function_code: int
    payload: bytes


@dataclass
class FrameReader:
    """
    Assembles one ADU at a time from the stream into the connection's buffer.
    Each read attempt gets a fresh deadline so slow senders are served as long as no single gap exceeds the timeout.
    """

    reader: asyncio.StreamReader
    adu: bytearray
    timeout: float
    state: FrameState = FrameState.AWAIT_HEADER

    async def read_frame(self) -> int:
        """
        :return: Length of the ADU now held at the start of the buffer
        :raises ConnectionClosed: If the peer closed the connection
        :raises asyncio.TimeoutError: If a read exceeded the read timeout
        :raises FrameError: If the header declares a length that can not be framed
        """
        self.state = FrameState.AWAIT_HEADER
        have, need = 0, TCP_HEADER_MBAP_SIZE
        try:
            while have < need:
                have += await self._fill(have, need)
                if have < need or self.state is not FrameState.AWAIT_HEADER:
                    continue
                protocol_id, length = struct.unpack_from(">HH", self.adu, 2)
                if protocol_id != TCP_PROTOCOL_IDENTIFIER:
                    log.debug("Invalid protocol identifier %d, discarding header", protocol_id)
                    have = 0
                    continue
                if length < 2:
                    log.debug("MBAP length %d holds no function code, discarding header", length)
                    have = 0
                    continue
                if length > len(self.adu) - TCP_HEADER_MBAP_SIZE + 1:
                    raise FrameError(f"Invalid MBAP length {length}")
                need = TCP_HEADER_MBAP_SIZE - 1 + length
                self.state = FrameState.AWAIT_BODY
        except BaseException:
            self.state = FrameState.ERROR
            raise
        self.state = FrameState.DISPATCH
        return need

    async def _fill(self, have: int, need: int) -> int:
        try:
            chunk = await asyncio.wait_for(self.reader.read(need - have), self.timeout)
        except OSError as e:
            if is_transient_io_error(e):
                return 0
            raise
        if not chunk:
            raise ConnectionClosed(f"remote client closed with {have} bytes of frame read")
        self.adu[have:have + len(chunk)] = chunk
        return len(chunk)


@dataclass
class ModbusTcpServer:
    slaves: SlaveRegistry = field(default_factory=SlaveRegistry)
    host: str = "127.0.0.1"
    port: int = 502
    read_timeout: float = DEFAULT_READ_TIMEOUT
    write_timeout: float = DEFAULT_WRITE_TIMEOUT
    functions: typing.Dict[int, FunctionHandler] = field(default_factory=default_functions)
    pool: AduPool = field(default_factory=AduPool)
    server: typing.Optional[asyncio.AbstractServer] = None
    server_task: typing.Optional[asyncio.Task] = None
    shutdown: typing.Optional[asyncio.Event] = None
    connection_tasks: typing.Set[asyncio.Task] = field(default_factory=set)

    def add_nodes(self, *nodes: NodeRegister):
        self.slaves.add(*nodes)

    def delete_node(self, slave_id: int):
        self.slaves.delete(slave_id)

    def delete_all_nodes(self):
        self.slaves.delete_all()

    def get_node(self, slave_id: int) -> NodeRegister:
        return self.slaves.get(slave_id)

    def node_list(self) -> typing.List[NodeRegister]:
        return self.slaves.list()

    def range_nodes(self, visit: typing.Callable[[int, NodeRegister], bool]):
        self.slaves.range(visit)

    def register_function(self, function_code: int, handler: FunctionHandler):
        self.functions[function_code] = handler

    @property
    def address(self) -> typing.Optional[tuple]:
        if not self.server or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[:2]

    async def start(self, host: typing.Optional[str] = None, port: typing.Optional[int] = None):
        await self.stop()
        if host is not None:
            self.host = host
        if port is not None:
            self.port = port
        self.shutdown = asyncio.Event()
        self.server = await asyncio.start_server(
            self.accept_connection, self.host, self.port
        )
        self.server_task = asyncio.create_task(self.server.serve_forever())
        log.debug("Server running on %s", self.address)

    async def serve(self, host: typing.Optional[str] = None, port: typing.Optional[int] = None):
        """
        Serve until the server is stopped. Errors binding the listener are raised, errors accepting a connection
        are logged by the event loop and serving continues.
        """
        await self.start(host, port)
        try:
            await asyncio.wait({self.server_task})
        finally:
            await self.stop()

    async def stop(self):
        """
        Close the listener and wait for every connection worker to finish the frame it is handling.
        Workers blocked reading are bounded by the read timeout.
        """
        server, self.server = self.server, None
        task, self.server_task = self.server_task, None
        if self.shutdown is not None:
            self.shutdown.set()
        if server:
            server.close()
        if task:
            task.cancel()
        if self.connection_tasks:
            await asyncio.gather(*self.connection_tasks, return_exceptions=True)
        if server:
            await server.wait_closed()
            log.debug("Server stopped")

    def accept_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> asyncio.Task:
        """
        Called by the listener on accept. The worker is tracked before it first runs so stop always waits for it.
        """
        task = asyncio.create_task(self.handle_connection(reader, writer))
        self.connection_tasks.add(task)
        task.add_done_callback(self.connection_tasks.discard)
        return task

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        log.debug("Client %s connected", peer)
        adu = self.pool.get()
        frames = FrameReader(reader, adu, self.read_timeout)
        cause = "server active close"
        try:
            while not self.shutdown.is_set():
                length = await frames.read_frame()
                await self.frame_handler(writer, adu, length)
        except asyncio.TimeoutError:
            cause = "timeout"
        except OSError as e:
            cause = repr(e)
        finally:
            self.pool.put(adu)
            writer.close()
            log.debug("Client %s disconnected, cause by %s", peer, cause)

    async def frame_handler(self, writer: asyncio.StreamWriter, adu: bytearray, length: int):
        """
        Dispatch one ADU and write the response. Faults raised processing the frame are logged and the frame gets
        no response. Errors writing the response are raised and end the connection.
        """
        try:
            response_length = await self.process_frame(adu, length)
        except Exception:
            log.exception("Unexpected fault processing frame %s", adu[:length].hex())
            return
        if response_length is None:
            return
        await self.write_response(writer, bytes(adu[:response_length]))

    def decode_packet(self, request: bytearray, length: int) -> RequestPacket:
        """
        Decode the Modbus Application Protocol Header
        :param request: Buffer holding the ADU
        :param length: Length of the ADU
        :return: Request packet with a copy of the request data
        """
        trans_id, protocol_id, data_len, unit, function_code = struct.unpack_from(
            ">HHHBB", request
        )
        return RequestPacket(
            trans_id, protocol_id, data_len, unit, function_code, bytes(request[8:length])
        )

    async def process_frame(self, adu: bytearray, length: int) -> typing.Optional[int]:
        """
        Process the request by pushing it to the handler of its function code. The response is written over the
        request in the ADU buffer.
        :return: Length of the response ADU or None if there is no response
        """
        if log.isEnabledFor(logging.DEBUG):
            log.debug("RX Raw[%s]", adu[:length].hex(" "))
        packet = self.decode_packet(adu, length)
        try:
            node = self.slaves.get(packet.unit)
        except UnknownSlave:
            log.debug("Slave id %d not registered, request dropped", packet.unit)
            return None
        function_code = packet.function_code
        try:
            handler = self.functions.get(packet.function_code)
            if handler is None:
                raise IllegalFunction(f"Function code {packet.function_code} not supported")
            pdu = handler(node, packet.payload)
            if inspect.isawaitable(pdu):
                pdu = await pdu
        except ModbusException as e:
            function_code |= 0x80
            pdu = struct.pack(">B", exception_code(e))
        return self.encode_response(adu, packet, function_code, pdu)

    def encode_response(self, adu: bytearray, packet: RequestPacket, function_code: int, pdu: bytes) -> int:
        end = TCP_HEADER_MBAP_SIZE + 1 + len(pdu)
        if end > len(adu):
            raise ValueError(f"Response of {end} bytes exceeds the ADU size")
        adu[:TCP_HEADER_MBAP_SIZE + 1] = encoders.pack_header(
            packet.transaction_id, packet.protocol_id, packet.unit, function_code, len(pdu)
        )
        adu[TCP_HEADER_MBAP_SIZE + 1:end] = pdu
        if log.isEnabledFor(logging.DEBUG):
            log.debug("TX Raw[%s]", adu[:end].hex(" "))
        return end

    async def write_response(self, writer: asyncio.StreamWriter, response: bytes):
        writer.write(response)
        while True:
            try:
                await asyncio.wait_for(writer.drain(), self.write_timeout)
                return
            except OSError as e:
                if not is_transient_io_error(e):
                    raise
                log.debug("Transient error writing response: %r", e)


if __name__ == "__main__":
    from aiomodbus_slave.datastore import NodeRegister

    async def main():
        server = ModbusTcpServer(port=5020)
        server.add_nodes(
            NodeRegister.create(
                1,
                coils=(0, 100),
                discrete_inputs=(0, 100),
                input_registers=(0, 100),
                holding_registers=(0, 100),
            )
        )
        await server.serve()

    logging.basicConfig(level=logging.DEBUG)
    asyncio.run(main())
