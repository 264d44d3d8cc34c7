"""
Transport adapters for TinyG serial channels.
"""

from tinyg_sender.streams.streams import Stream
from tinyg_sender.streams.usb import USBStream, SERIAL_TIMEOUT, BAUD_RATE
from tinyg_sender.streams.dummy import DummyStream
