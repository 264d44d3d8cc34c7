import logging
import serial
import serial.tools.list_ports
from typing import Optional, List, Dict

from tinyg_sender.errors import TransportError
from tinyg_sender.streams.streams import Stream

# Constants
BAUD_RATE = 115200
SERIAL_TIMEOUT = 0.3  # seconds

class USBStream(Stream):
    """USB Serial connection established on initialization."""

    def __init__(self, address: str, baudrate: int = BAUD_RATE, timeout: float = SERIAL_TIMEOUT):
        """
        Initialize and open serial connection. Raises TransportError on failure.

        Args:
            address: Serial device path (e.g. /dev/ttyACM0 or COM3).
            baudrate: Line speed. TinyG over USB CDC ignores it, but FTDI boards do not.
            timeout: Read timeout in seconds; readline() returns b'' when it expires.
        """
        self.address = address
        self.serial: Optional[serial.Serial] = None
        self.log = logging.getLogger("USBStream")
        self._read_buffer = b''

        self.log.debug(f"Attempting to open {address}...")
        try:
            self.serial = serial.Serial(
                port=address,
                baudrate=baudrate,
                timeout=timeout
            )
            self.log.debug("Serial object created. Performing DTR sequence...")

            # --- DTR TOGGLE ---
            try:
                self.serial.dtr = False
            except IOError: pass
            self.serial.reset_input_buffer()
            try:
                self.serial.dtr = True
            except IOError: pass
            # --- END DTR TOGGLE ---

            self.log.info(f"Serial port opened successfully: {address}")

        except (serial.SerialException, OSError) as e:
            self.log.error(f"Serial connection error during init: {str(e)}")
            if self.serial is not None and self.serial.is_open:
                try:
                    self.serial.close()
                except (serial.SerialException, OSError):
                    pass
            self.serial = None
            raise TransportError(f"Failed to open USB device {address}: {e}") from e

    def __repr__(self) -> str:
        return f"USBStream({self.address!r})"

    @property
    def is_open(self) -> bool:
        return self.serial is not None

    def close(self) -> bool:
        """Close serial connection"""
        closed_successfully = True
        if self.serial:
            try:
                if self.serial.is_open:
                    self.log.debug(f"Closing serial port {self.address}...")
                    self.serial.close()
                    self.log.debug("Serial port closed.")
                else:
                    self.log.debug("Serial port was already closed.")
            except (serial.SerialException, OSError) as e:
                self.log.error(f"Error closing serial connection: {str(e)}")
                closed_successfully = False
            finally:
                # Always drop the handle so a second close() is a no-op
                self.serial = None
                self._read_buffer = b''
        else:
            self.log.debug("Close called but self.serial is already None.")

        return closed_successfully

    def send(self, data: bytes) -> None:
        """Send data over serial connection"""
        if not self.serial:
            raise TransportError(f"Send on closed port {self.address}")
        try:
            self.serial.write(data)
            self.serial.flush()
        except (serial.SerialException, OSError) as e:
            self.log.error(f"Error during serial send: {e}")
            raise TransportError(f"Serial send failed on {self.address}: {e}") from e

    def write_line(self, line: str) -> None:
        """Send one newline-terminated line."""
        self.send((line + '\n').encode('utf-8'))

    def readline(self) -> bytes:
        """
        Read a line from the serial connection.

        Returns the line including its terminating newline, or b'' when the
        read timeout expires before a full line is available. Partial data is
        kept in an internal buffer for the next call.
        """
        if not self.serial:
            raise TransportError(f"Read on closed port {self.address}")

        try:
            # First, read any available bytes into our buffer
            if self.serial.in_waiting:
                new_data = self.serial.read(self.serial.in_waiting)
                if new_data:
                    self._read_buffer += new_data

            # If no full line yet, do a blocking read bounded by the port timeout
            if b'\n' not in self._read_buffer:
                chunk = self.serial.read_until(b'\n')
                if chunk:
                    self._read_buffer += chunk
        except (serial.SerialException, OSError, TypeError, AttributeError) as e:
            # Closing the port from another thread can surface as TypeError/AttributeError mid-read
            self.log.error(f"Error during serial readline: {e}")
            raise TransportError(f"Serial read failed on {self.address}: {e}") from e

        found_pos = self._read_buffer.find(b'\n')
        if found_pos == -1:
            return b''
        line = self._read_buffer[:found_pos + 1]
        self._read_buffer = self._read_buffer[found_pos + 1:]
        return line

    @staticmethod
    def list_ports() -> List[Dict[str, str]]:
        """List available serial ports (Static method - no self.log)."""
        ports = []
        try:
            for port in serial.tools.list_ports.comports():
                ports.append({
                    'port': port.device,
                    'description': port.description or '',
                    'hwid': port.hwid or '',
                    'serial_number': port.serial_number or '',
                    'manufacturer': port.manufacturer or '',
                })
        except (OSError, serial.SerialException) as e:
            logging.error(f"Error listing serial ports: {str(e)}")
        return ports
