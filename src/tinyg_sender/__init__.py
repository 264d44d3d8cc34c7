"""
TinyG Sender - stream G-code to TinyG motion controllers with buffer flow control
"""

__version__ = "0.1.0"

from tinyg_sender.device.manager import TinyG
from tinyg_sender.errors import (
    TinyGError, NoPortFound, AlreadyOpen, AlreadyOpening, NotOpen, TransportError,
)

# This function is a direct entry point for CLI use
def cli_main():
    """
    Entry point for the CLI command.
    This function is referenced in pyproject.toml
    """
    import sys
    from tinyg_sender.main import main
    sys.exit(main())
