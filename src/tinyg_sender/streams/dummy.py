import logging
import queue
from typing import Callable, List, Optional, Union

from tinyg_sender.errors import TransportError
from .streams import Stream # Import the Stream protocol

# How long readline() waits for scripted input before reporting a timeout
DUMMY_READ_TIMEOUT = 0.05 # seconds

class DummyStream(Stream):
    """An in-memory stream for exercising the sender without hardware.

    Writes are recorded, inbound lines are scripted with feed(), and a
    reply hook can answer writes the way a device would.
    """

    def __init__(self, address: str = "dummy_addr",
                 on_send: Optional[Callable[["DummyStream", bytes], None]] = None):
        self.log = logging.getLogger("DummyStream")
        self.address = address
        self._open = True
        self.sent_data: List[bytes] = []
        self.close_calls = 0
        self.on_send = on_send
        self._inbound: "queue.Queue[bytes]" = queue.Queue()
        self._write_failure: Optional[Exception] = None
        self._read_failure: Optional[Exception] = None
        self.log.debug(f"Initialized DummyStream for {address}")

    @property
    def is_open(self) -> bool:
        return self._open

    def __repr__(self) -> str:
        return f"DummyStream({self.address!r})"

    # --- Stream Protocol Methods --- #

    def close(self) -> bool:
        """Simulates closing the stream."""
        self.close_calls += 1
        if not self._open:
            return True # Closing an already closed stream is fine
        self._open = False
        self.log.debug(f"DummyStream closed for {self.address}")
        return True

    def send(self, data: bytes) -> None:
        """Records sent data."""
        if self._write_failure is not None:
            raise TransportError(str(self._write_failure)) from self._write_failure
        if not self._open:
            self.log.error("Send called on closed DummyStream")
            raise TransportError("Stream is closed")
        self.log.debug(f"Send received data: {data!r}")
        self.sent_data.append(data)
        if self.on_send is not None:
            self.on_send(self, data)

    def write_line(self, line: str) -> None:
        self.send((line + '\n').encode('utf-8'))

    def readline(self) -> bytes:
        """Returns the next scripted line, or b'' after a short wait."""
        if self._read_failure is not None:
            raise TransportError(str(self._read_failure)) from self._read_failure
        if not self._open:
            raise TransportError("Stream is closed")
        try:
            return self._inbound.get(timeout=DUMMY_READ_TIMEOUT)
        except queue.Empty:
            return b''

    # --- Test Helper Methods --- #

    def feed(self, line: Union[str, bytes]) -> None:
        """Queues a line for readline() as if the device had sent it."""
        if isinstance(line, str):
            line = line.encode('utf-8')
        if not line.endswith(b'\n'):
            line += b'\n'
        self._inbound.put(line)

    def fail_with(self, exc: Exception, reads: bool = True, writes: bool = True) -> None:
        """Makes subsequent readline()/send() calls raise TransportError."""
        if reads:
            self._read_failure = exc
        if writes:
            self._write_failure = exc

    def get_sent_data(self, decode: bool = True) -> List[Union[str, bytes]]:
        """Returns a list of data chunks sent via send()."""
        if decode:
            return [d.decode('utf-8', errors='ignore') for d in self.sent_data]
        else:
            return self.sent_data

    def get_sent_lines(self) -> List[str]:
        """Returns sent chunks decoded and stripped of their newline."""
        return [d.rstrip('\n') for d in self.get_sent_data(decode=True)]

    def clear_sent_data(self):
        """Clears the history of sent data."""
        self.sent_data.clear()
