"""
Device session management: port discovery, flow control, streaming and lifecycle.
"""

from tinyg_sender.device.manager import TinyG
