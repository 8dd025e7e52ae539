from __future__ import annotations

import threading
import typing

from aiomodbus_slave.exceptions import UnknownSlave

if typing.TYPE_CHECKING:
    from aiomodbus_slave.datastore import NodeRegister


class SlaveRegistry:
    """
    Maps slave ids to their register backends. Connection workers look nodes up concurrently while the application
    adds or removes nodes, possibly from another thread.
    """

    def __init__(self):
        self._nodes: typing.Dict[int, NodeRegister] = {}
        self._lock = threading.RLock()

    def add(self, *nodes: NodeRegister):
        for node in nodes:
            if (node.slave_id & 0xFF) != node.slave_id:
                raise ValueError(f"Slave id {node.slave_id} out of range 0..255")
        with self._lock:
            for node in nodes:
                self._nodes[node.slave_id] = node

    def delete(self, slave_id: int):
        with self._lock:
            self._nodes.pop(slave_id, None)

    def delete_all(self):
        with self._lock:
            self._nodes.clear()

    def get(self, slave_id: int) -> NodeRegister:
        with self._lock:
            try:
                return self._nodes[slave_id]
            except KeyError:
                raise UnknownSlave(slave_id) from None

    def list(self) -> typing.List[NodeRegister]:
        with self._lock:
            return list(self._nodes.values())

    def range(self, visit: typing.Callable[[int, NodeRegister], bool]):
        """
        Call visit(slave_id, node) for each registered node until it returns False.
        Iterates over a snapshot so visit may add or delete nodes.
        """
        with self._lock:
            snapshot = list(self._nodes.items())
        for slave_id, node in snapshot:
            if not visit(slave_id, node):
                break

    def __contains__(self, slave_id: int):
        with self._lock:
            return slave_id in self._nodes

    def __len__(self):
        with self._lock:
            return len(self._nodes)
