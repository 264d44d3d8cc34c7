import json
import logging
import os
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from tinyg_sender.device.events import EventEmitter
from tinyg_sender.device.flow import FlowControlTracker, parse_control_line
from tinyg_sender.device.ports import PortResolver
from tinyg_sender.device.streamer import Job, StreamingEngine
from tinyg_sender.errors import AlreadyOpen, AlreadyOpening, NotOpen, TransportError
from tinyg_sender.streams.streams import Stream
from tinyg_sender.streams.usb import SERIAL_TIMEOUT

# Connection states
STATE_CLOSED = "closed"
STATE_OPENING = "opening"
STATE_OPEN = "open"
STATE_CLOSING = "closing"

# Sent on the control channel right after open: enable single-line queue
# reports, then ask for the current one so streaming can start.
STARTUP_COMMANDS = ('{"qv":1}', '{"qr":null}')

# Upper bound on waiting for a reader thread to notice the port closed
READER_JOIN_TIMEOUT = SERIAL_TIMEOUT * 4 + 1.0

class TinyG(EventEmitter):
    """
    Manages one session with a TinyG controller over its control and data channels.

    Opening resolves a port pair, starts a reader thread per channel and
    enables queue reports. G-code sent with send()/send_file() is streamed by
    a StreamingEngine that only writes while the device advertises free
    planner buffers. Any transport failure while open closes the session.

    Events (register with on()/once()):
        open        - connection is usable: handles set, readers running, startup commands written
        close       - connection is closed, channel handles are None
        error       - exc: NoPortFound on a failed open, TransportError on I/O failure
        job_complete - job: every line of the job has been written
        status      - status: merged status report after an 'sr' message
        response    - message: any JSON object received from the device
        data        - line, channel: every non-empty line received
        sent        - line: every line written to the data channel
    """

    def __init__(self, resolver: Optional[PortResolver] = None,
                 startup_commands: Sequence[str] = STARTUP_COMMANDS):
        """
        Args:
            resolver: PortResolver used by open_first(). Defaults to USB discovery.
            startup_commands: Control-channel commands written after every open.
        """
        super().__init__()
        self.log = logging.getLogger("TinyG")
        self.resolver = resolver if resolver is not None else PortResolver()
        self.startup_commands = tuple(startup_commands)

        self.serial_port_control: Optional[Stream] = None
        self.serial_port_data: Optional[Stream] = None
        self.state = STATE_CLOSED
        self.status: Dict[str, Any] = {}

        self.tracker = FlowControlTracker()
        self.engine = StreamingEngine(
            self.tracker,
            self._write_data_line,
            on_job_complete=lambda job: self.emit('job_complete', job),
            on_line_sent=lambda line: self.emit('sent', line),
        )

        self._lifecycle_lock = threading.RLock()
        self._stop_readers: Optional[threading.Event] = None
        self._readers: List[threading.Thread] = []
        self._closed = threading.Event()
        self._closed.set()
        # Set whenever no open attempt is in flight
        self._open_settled = threading.Event()
        self._open_settled.set()

    def __enter__(self) -> "TinyG":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self.state == STATE_OPEN

    @property
    def lines_requested(self) -> int:
        """Unsent lines still queued for the device."""
        return self.engine.pending_count()

    @property
    def data_port_control(self) -> Optional[Stream]:
        """The data channel handle; kept under the name older callers use."""
        return self.serial_port_data

    # --- Lifecycle ---

    def open_first(self, ports: Optional[Sequence[str]] = None) -> None:
        """
        Connect to the first TinyG found.

        The 'open' event fires once the reader threads are running and the
        startup commands have been written, so listeners can rely on both.

        Args:
            ports: Optional explicit device paths, passed to the resolver.

        Raises:
            AlreadyOpen / AlreadyOpening: a session is open or being opened.
            NoPortFound: no candidate port answered. The connection stays closed.
        """
        with self._lifecycle_lock:
            if self.state == STATE_OPENING:
                raise AlreadyOpening("An open attempt is already in progress")
            if self.state in (STATE_OPEN, STATE_CLOSING):
                raise AlreadyOpen(f"Connection is {self.state}")
            self.state = STATE_OPENING
            self._closed.clear()
            self._open_settled.clear()

        try:
            control, data = self.resolver.resolve_first(ports)
        except Exception as e:
            # Never leave the connection stuck in OPENING
            with self._lifecycle_lock:
                self.state = STATE_CLOSED
                self._closed.set()
                self._open_settled.set()
            self.log.error(f"Open failed: {e}")
            self.emit('error', e)
            raise

        with self._lifecycle_lock:
            # Jobs left from an earlier session never reach the new data channel
            dropped = self.engine.flush()
            if dropped:
                self.log.warning(f"Discarded {dropped} stale line(s) before open")
            self.serial_port_control = control
            self.serial_port_data = data
            self.tracker.reset()
            self.status = {}
            self.state = STATE_OPEN
            self._open_settled.set()
            self._start_readers(control, data)

        for command in self.startup_commands:
            try:
                self.write(command)
            except (TransportError, NotOpen) as e:
                self.log.error(f"Startup command {command!r} failed: {e}")
                break

        with self._lifecycle_lock:
            if self.state != STATE_OPEN:
                # Closed by a startup failure or a concurrent close()
                return
        self.log.info(f"Connection open (control={control}, data={data})")
        self.emit('open')

    def close(self) -> None:
        """
        Close both channels. Safe to call any number of times; every call
        emits exactly one 'close' event. A close() during an open attempt
        waits for the attempt to settle, then closes whatever it opened.
        """
        current = threading.current_thread()
        with self._lifecycle_lock:
            state = self.state
            if state == STATE_OPEN:
                self.state = STATE_CLOSING
                readers = list(self._readers)
                self._shutdown_channels()

        if state == STATE_CLOSED:
            self.log.debug("Close called but connection is already closed.")
            self.emit('close')
            return
        if state == STATE_OPENING:
            self.log.debug("Close called while opening; waiting for the open attempt")
            self._open_settled.wait()
            self.close()
            return
        if state == STATE_CLOSING:
            # Another thread is mid-close; wait for it unless we are one of its readers
            if current not in self._readers:
                self._closed.wait(READER_JOIN_TIMEOUT * 2)
            self.emit('close')
            return

        for reader in readers:
            if reader is not current:
                reader.join(READER_JOIN_TIMEOUT)
                if reader.is_alive():
                    self.log.warning(f"Reader thread {reader.name} did not stop in time")

        with self._lifecycle_lock:
            self._readers = []
            self.tracker.reset()
            self.state = STATE_CLOSED
            self._closed.set()
        self.log.info("Connection closed")
        self.emit('close')

    def _shutdown_channels(self) -> None:
        """Drop pending work, stop readers and close both streams. Caller holds the lifecycle lock."""
        dropped = self.engine.flush()
        if dropped:
            self.log.info(f"Discarded {dropped} unsent line(s) on close")
        if self._stop_readers is not None:
            self._stop_readers.set()

        streams: List[Stream] = []
        for stream in (self.serial_port_control, self.serial_port_data):
            if stream is not None and all(stream is not s for s in streams):
                streams.append(stream)
        for stream in streams:
            try:
                stream.close()
            except (TransportError, OSError) as e:
                self.log.error(f"Error closing {stream}: {e}")
        self.serial_port_control = None
        self.serial_port_data = None

    def _start_readers(self, control: Stream, data: Stream) -> None:
        self._stop_readers = threading.Event()
        channels = [('control', control)]
        if data is not control:
            channels.append(('data', data))
        for role, stream in channels:
            thread = threading.Thread(
                target=self._reader_loop,
                args=(stream, role, self._stop_readers),
                name=f"tinyg-{role}-reader",
                daemon=True,
            )
            self._readers.append(thread)
            thread.start()

    def _reader_loop(self, stream: Stream, role: str, stop: threading.Event) -> None:
        self.log.debug(f"{role} reader started")
        while not stop.is_set():
            try:
                raw = stream.readline()
            except TransportError as e:
                if not stop.is_set():
                    self._on_transport_error(e)
                break
            if raw:
                self._handle_line(raw, role)
        self.log.debug(f"{role} reader stopped")

    def _on_transport_error(self, error: TransportError) -> None:
        with self._lifecycle_lock:
            if self.state != STATE_OPEN:
                self.log.debug(f"Ignoring transport error while {self.state}: {error}")
                return
        self.log.error(f"Transport error, closing connection: {error}")
        self.emit('error', error)
        self.close()

    # --- Inbound ---

    def _handle_line(self, raw: bytes, role: str) -> None:
        line = raw.decode('utf-8', errors='ignore').strip()
        if not line:
            return
        self.log.debug(f"Recv ({role}): {line}")
        self.emit('data', line, role)

        message = parse_control_line(line)
        if message is None:
            return

        if isinstance(message.get('sr'), dict):
            self.status.update(message['sr'])
            self.emit('status', dict(self.status))

        footer = message.get('f')
        if isinstance(footer, list) and len(footer) > 1 and footer[1] != 0:
            self.log.warning(f"Device reported status code {footer[1]} for: {line}")
        if 'er' in message:
            self.log.warning(f"Device exception report: {message['er']}")

        if line.startswith('{'):
            self.emit('response', message)

        try:
            self.engine.on_status_report(message)
        except TransportError as e:
            self._on_transport_error(e)

    # --- Outbound ---

    def _write_data_line(self, line: str) -> None:
        stream = self.serial_port_data
        if stream is None:
            raise TransportError("Data channel is not open")
        stream.write_line(line)

    def write(self, command: Union[str, Dict[str, Any]]) -> None:
        """
        Write one command to the control channel.

        Args:
            command: Raw command text, or a dict sent as compact JSON.
        """
        if isinstance(command, dict):
            command = json.dumps(command, separators=(',', ':'))
        with self._lifecycle_lock:
            stream = self.serial_port_control
            if self.state != STATE_OPEN or stream is None:
                raise NotOpen("Cannot write: connection is not open")
            self.log.debug(f"Send (control): {command}")
            try:
                stream.write_line(command)
                return
            except TransportError as e:
                failure = e
        self._on_transport_error(failure)
        raise failure

    def send(self, lines: Union[Iterable[str], str, os.PathLike], name: Optional[str] = None) -> Job:
        """
        Stream G-code to the device. Returns immediately; listen for
        'job_complete' to learn when the last line has been written. A send
        while another job is running queues behind it.

        Args:
            lines: G-code lines, or the path of a G-code file.
            name: Job name; defaults to the file name for paths.
        """
        if isinstance(lines, (str, os.PathLike)):
            return self.send_file(lines, name=name)
        return self._send_lines(lines, name)

    def send_file(self, path: Union[str, os.PathLike], name: Optional[str] = None) -> Job:
        """Stream a newline-delimited G-code file."""
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            lines = f.read().splitlines()
        self.log.info(f"Loaded {len(lines)} line(s) from {path}")
        return self._send_lines(lines, name or os.path.basename(os.fspath(path)))

    def _send_lines(self, lines: Iterable[str], name: Optional[str]) -> Job:
        # The state check and the enqueue happen under one lock so a
        # concurrent close() either runs first or flushes this job.
        with self._lifecycle_lock:
            if self.state != STATE_OPEN:
                raise NotOpen("Cannot send: connection is not open")
            try:
                return self.engine.send(lines, name=name)
            except TransportError as e:
                failure = e
        self._on_transport_error(failure)
        raise failure

    def flush(self) -> int:
        """Discard every unsent line. Lines already written are left to the device."""
        with self._lifecycle_lock:
            if self.state != STATE_OPEN:
                raise NotOpen("Cannot flush: connection is not open")
            return self.engine.flush()

    def pending_count(self) -> int:
        return self.engine.pending_count()

    def wait_until_idle(self, timeout: Optional[float] = None, poll: float = 0.05) -> bool:
        """
        Block until nothing is left to send or the connection closes.

        Returns:
            True if all queued lines were written, False on timeout or close.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if self.state != STATE_OPEN:
                return False
            if self.engine.pending_count() == 0:
                return True
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(poll)
