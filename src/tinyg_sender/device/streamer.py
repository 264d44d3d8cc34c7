"""
Credit-gated G-code streaming.

The engine pushes lines to the data channel only while the flow-control
tracker has credit, and tries again every time a status report arrives.
"""

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from tinyg_sender.device.flow import FlowControlTracker


def clean_lines(lines: Iterable[str]) -> List[str]:
    """Strip line endings and drop blank lines, which are not commands."""
    cleaned = []
    for line in lines:
        line = line.rstrip()
        if line.strip():
            cleaned.append(line)
    return cleaned


class Job:
    """An ordered batch of G-code lines being streamed to the device."""

    _next_id = 0

    def __init__(self, lines: List[str], name: Optional[str] = None):
        Job._next_id += 1
        self.id = Job._next_id
        self.name = name or f"job-{self.id}"
        self.lines = lines
        self.next_index = 0
        # Lines written since the last status report
        self.in_flight = 0
        self.flushed = False

    def __repr__(self) -> str:
        return f"Job({self.name!r}, {self.next_index}/{self.total})"

    @property
    def total(self) -> int:
        return len(self.lines)

    @property
    def remaining(self) -> int:
        return self.total - self.next_index

    @property
    def done(self) -> bool:
        return self.next_index >= self.total

    def discard(self) -> int:
        """Skip every unsent line. Returns how many were dropped."""
        dropped = self.remaining
        self.next_index = self.total
        self.flushed = True
        return dropped


class StreamingEngine:
    """
    Streams jobs line by line to the data channel, gated by device credit.

    Jobs submitted while another is running are queued FIFO. All mutation of
    the tracker and the job queue happens under self.lock, so a status report
    never races a line write and flush() takes effect immediately.

    Args:
        tracker: Flow-control tracker that owns the credit count.
        write_line: Callable writing one line to the data channel.
        on_job_complete: Called with each Job once its last line is written.
        on_line_sent: Called with each line after it is written.
    """

    def __init__(self, tracker: FlowControlTracker,
                 write_line: Callable[[str], None],
                 on_job_complete: Optional[Callable[[Job], None]] = None,
                 on_line_sent: Optional[Callable[[str], None]] = None):
        self.log = logging.getLogger("StreamingEngine")
        self.tracker = tracker
        self.write_line = write_line
        self.on_job_complete = on_job_complete
        self.on_line_sent = on_line_sent
        self.lock = threading.RLock()
        self._jobs: Deque[Job] = deque()
        self.lines_sent = 0

    @property
    def active_job(self) -> Optional[Job]:
        with self.lock:
            return self._jobs[0] if self._jobs else None

    @property
    def busy(self) -> bool:
        return self.pending_count() > 0

    def pending_count(self) -> int:
        """Unsent lines across the active job and everything queued behind it."""
        with self.lock:
            return sum(job.remaining for job in self._jobs)

    def send(self, lines: Iterable[str], name: Optional[str] = None) -> Job:
        """Queue lines as a new job and start streaming what credit allows."""
        job = Job(clean_lines(lines), name=name)
        with self.lock:
            if self._jobs:
                self.log.info(f"{job.name} ({job.total} lines) queued behind {len(self._jobs)} job(s)")
            else:
                self.log.info(f"Starting {job.name} ({job.total} lines)")
            self._jobs.append(job)
        self.pump()
        return job

    def on_status_report(self, report: Union[int, Dict[str, Any]]) -> bool:
        """Update credit from a report and resume streaming if it carried one."""
        with self.lock:
            updated = self.tracker.on_status_report(report)
            if updated:
                for job in self._jobs:
                    job.in_flight = 0
        if updated:
            self.pump()
        return updated

    def pump(self) -> int:
        """
        Write as many lines as credit allows.

        Returns:
            Number of lines written during this call.
        """
        written = 0
        completed: List[Job] = []
        try:
            with self.lock:
                while self._jobs:
                    job = self._jobs[0]
                    if job.done:
                        self._jobs.popleft()
                        if not job.flushed:
                            completed.append(job)
                        continue
                    if not self.tracker.reserve(1):
                        break
                    line = job.lines[job.next_index]
                    self.write_line(line)
                    job.next_index += 1
                    job.in_flight += 1
                    self.lines_sent += 1
                    written += 1
                    self.log.debug(f"Sent [{job.name} {job.next_index}/{job.total}]: {line}")
                    if self.on_line_sent is not None:
                        self.on_line_sent(line)
        finally:
            # Completion callbacks run outside the lock so they may call send()
            for job in completed:
                self.log.info(f"{job.name} complete ({job.total} lines)")
                if self.on_job_complete is not None:
                    self.on_job_complete(job)
        return written

    def flush(self) -> int:
        """
        Drop every unsent line of the active and queued jobs.

        Lines already written stay with the device. Returns the number of
        lines discarded.
        """
        with self.lock:
            dropped = 0
            for job in self._jobs:
                dropped += job.discard()
            self._jobs.clear()
        if dropped:
            self.log.info(f"Flushed {dropped} unsent line(s)")
        else:
            self.log.debug("Flush called with nothing pending")
        return dropped
