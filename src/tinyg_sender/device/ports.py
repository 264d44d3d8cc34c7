import logging
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tinyg_sender.errors import NoPortFound, TransportError
from tinyg_sender.streams.streams import Stream
from tinyg_sender.streams.usb import USBStream

# Seconds to wait for the control channel to answer the probe
PROBE_TIMEOUT = 1.0
# Firmware-build query; any reply means a TinyG is listening
PROBE_COMMAND = '{"fb":null}'

# (control port, data port or None for single-port devices)
Candidate = Tuple[str, Optional[str]]


class PortResolver:
    """
    Finds the first serial port pair that behaves like a TinyG.

    TinyG v9 enumerates as two CDC ports sharing one USB serial number: the
    first (by path) carries control traffic, the second the G-code stream.
    Older boards expose one port that serves both roles.

    Args:
        stream_factory: Callable opening a Stream for a device path.
        list_ports: Callable returning port dicts as USBStream.list_ports() does.
        probe_timeout: Seconds to wait for a probe reply; 0 or None skips the probe.
    """

    def __init__(self,
                 stream_factory: Callable[[str], Stream] = USBStream,
                 list_ports: Callable[[], List[Dict[str, str]]] = USBStream.list_ports,
                 probe_timeout: Optional[float] = PROBE_TIMEOUT):
        self.log = logging.getLogger("PortResolver")
        self.stream_factory = stream_factory
        self.list_ports = list_ports
        self.probe_timeout = probe_timeout

    def candidates(self, ports: Optional[Sequence[str]] = None) -> List[Candidate]:
        """
        Build the ordered list of control/data candidates.

        Args:
            ports: Explicit device paths to use instead of enumerating. Each
                   path is treated as its own single-port candidate unless two
                   are given, in which case they form one control/data pair.
        """
        if ports:
            ports = list(ports)
            if len(ports) == 2:
                return [(ports[0], ports[1])]
            return [(p, None) for p in ports]

        infos = sorted(self.list_ports(), key=lambda info: info['port'])
        candidates: List[Candidate] = []
        by_serial: Dict[str, List[str]] = {}
        order: List[str] = []
        for info in infos:
            serial_number = info.get('serial_number') or ''
            if not serial_number:
                order.append(info['port'])
                continue
            if serial_number not in by_serial:
                by_serial[serial_number] = []
                order.append(serial_number)
            by_serial[serial_number].append(info['port'])

        for key in order:
            group = by_serial.get(key)
            if group is None:
                candidates.append((key, None))
            elif len(group) >= 2:
                candidates.append((group[0], group[1]))
            else:
                candidates.append((group[0], None))

        self.log.debug(f"Candidates: {candidates}")
        return candidates

    def resolve_first(self, ports: Optional[Sequence[str]] = None) -> Tuple[Stream, Stream]:
        """
        Open the first candidate that answers.

        Returns:
            (control, data) streams. For a single-port device both are the
            same object.

        Raises:
            NoPortFound: no candidate could be opened and probed.
        """
        candidates = self.candidates(ports)
        if not candidates:
            self.log.info("No serial ports available")
            raise NoPortFound("No serial ports available")

        for control_port, data_port in candidates:
            label = control_port if data_port is None else f"{control_port} + {data_port}"
            self.log.info(f"Trying {label}...")
            opened: List[Stream] = []
            try:
                control = self.stream_factory(control_port)
                opened.append(control)
                if data_port is not None:
                    data = self.stream_factory(data_port)
                    opened.append(data)
                else:
                    data = control
                if not self._probe(control):
                    raise TransportError(f"No reply from {control_port} within {self.probe_timeout}s")
            except (TransportError, OSError) as e:
                self.log.warning(f"Candidate {label} failed: {e}")
                for stream in opened:
                    stream.close()
                continue

            self.log.info(f"Connected to {label}")
            return control, data

        raise NoPortFound(f"No TinyG answered on any of {len(candidates)} candidate port(s)")

    def _probe(self, control: Stream) -> bool:
        if not self.probe_timeout:
            return True
        control.write_line(PROBE_COMMAND)
        deadline = time.monotonic() + self.probe_timeout
        while time.monotonic() < deadline:
            line = control.readline()
            if line.strip():
                self.log.debug(f"Probe reply: {line.strip()!r}")
                return True
        return False
