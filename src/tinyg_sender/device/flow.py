import json
import logging
import re
from typing import Any, Dict, Optional, Union

# Field carrying the number of free planner buffer slots
CREDIT_KEY = "qr"

# Text-mode queue reports look like "qr:28" or "qr=28"
_TEXT_QR_RE = re.compile(r"\bqr\s*[:=]\s*(-?\d+)")


def parse_control_line(line: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    """
    Parse one line received on the control channel.

    Args:
        line: Raw line, with or without its trailing newline.

    Returns:
        The decoded JSON object, a synthetic {"qr": N} dict for a text-mode
        queue report, or None for anything else (prompts, echoes, blanks).
    """
    if isinstance(line, bytes):
        line = line.decode('utf-8', errors='ignore')
    line = line.strip()
    if not line:
        return None
    if line.startswith('{'):
        try:
            message = json.loads(line)
        except ValueError:
            logging.getLogger("FlowControl").debug(f"Ignoring malformed JSON line: {line!r}")
            return None
        return message if isinstance(message, dict) else None
    match = _TEXT_QR_RE.search(line)
    if match:
        return {CREDIT_KEY: int(match.group(1))}
    return None


def extract_credit(message: Dict[str, Any]) -> Optional[int]:
    """Find the queue-report value in a parsed message, wherever TinyG put it."""
    for container in (message, message.get("r"), message.get("sr")):
        if isinstance(container, dict):
            value = container.get(CREDIT_KEY)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
    return None


class FlowControlTracker:
    """
    Tracks how many more lines the device's planner buffer can accept.

    Queue reports are absolute: each one replaces the tracked value instead of
    adding to it, since the device reports its real current state. Reports
    lower than the current estimate are accepted as-is.

    Not thread-safe on its own; StreamingEngine serializes access.
    """

    def __init__(self, initial_credit: int = 0):
        self.log = logging.getLogger("FlowControlTracker")
        self._credit = max(0, int(initial_credit))
        self.reports_seen = 0

    def on_status_report(self, report: Union[int, Dict[str, Any]]) -> bool:
        """
        Apply a status report.

        Args:
            report: Either the advertised free-slot count, or a parsed
                    control message that may carry one.

        Returns:
            True if the report carried a credit value, False if it was ignored.
        """
        if isinstance(report, dict):
            value = extract_credit(report)
            if value is None:
                return False
        else:
            value = int(report)

        if value < 0:
            self.log.warning(f"Device reported negative free buffers ({value}), clamping to 0")
            value = 0
        if value < self._credit:
            self.log.debug(f"Credit corrected downward: {self._credit} -> {value}")
        self._credit = value
        self.reports_seen += 1
        return True

    def available_credit(self) -> int:
        return self._credit

    def reserve(self, n: int = 1) -> bool:
        """Take n credits if all n are available; otherwise change nothing."""
        if n < 0:
            raise ValueError(f"Cannot reserve a negative amount of credit ({n})")
        if self._credit < n:
            return False
        self._credit -= n
        return True

    def reset(self, credit: int = 0) -> None:
        self._credit = max(0, int(credit))
        self.reports_seen = 0
