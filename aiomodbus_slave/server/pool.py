import collections
import threading

TCP_ADU_MAX_SIZE = 260


class AduPool:
    """
    Free list of fixed size ADU buffers shared by the connection workers.
    Buffers handed out by get may hold data from a previous request.
    """

    def __init__(self, size: int = TCP_ADU_MAX_SIZE):
        self.size = size
        self._free = collections.deque()
        self._lock = threading.Lock()

    def get(self) -> bytearray:
        with self._lock:
            if self._free:
                return self._free.pop()
        return bytearray(self.size)

    def put(self, buf: bytearray):
        if len(buf) != self.size:
            return
        with self._lock:
            self._free.append(buf)

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._free)
