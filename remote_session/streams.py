"""Polling reads and line writes against an interactive channel."""
import codecs
import logging
import threading
import time
from typing import Optional

import paramiko

from .config import RemoteConfig
from .datastructures import PromptStatus, PromptWaitResult
from .errors import StreamAcquisitionError
from .polling import NO_TIMEOUT, PollOutcome, poll_until


class ChannelStreams:
    """Drives terminal I/O on a started channel.

    Reads never block: each pass takes whatever the channel has buffered (up
    to ``channel_buffer_size`` bytes). Waiting for input, for close, or for a
    prompt is done by polling at ``channel_check_interval``.
    """

    def __init__(self, channel: paramiko.Channel, config: Optional[RemoteConfig] = None,
                 cancel_event: Optional[threading.Event] = None, masked_uri: str = ""):
        self.logger = logging.getLogger('remote_session.streams')
        self._channel = channel
        self._config = config or RemoteConfig()
        self._cancel_event = cancel_event or threading.Event()
        self._masked_uri = masked_uri
        self._decoder = codecs.getincrementaldecoder(self._config.encoding)(errors='replace')
        try:
            self._stdin = channel.makefile_stdin('wb')
        except (paramiko.SSHException, OSError) as exc:
            raise StreamAcquisitionError(
                f"Failed to acquire channel output stream for {masked_uri}: {exc}"
            ) from exc

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def write_line(self, line: str) -> None:
        """Send ``line`` followed by a newline and flush immediately."""
        self.logger.getChild('write').debug(f"[WRITE] {len(line)} chars to {self._masked_uri}")
        self._stdin.write((line + "\n").encode(self._config.encoding))
        self._stdin.flush()

    def read_available(self) -> Optional[str]:
        """Return newly buffered output as text, or None if nothing is ready."""
        if not self._channel.recv_ready():
            return None
        data = self._channel.recv(self._config.channel_buffer_size)
        if not data:
            return None
        return self._decoder.decode(data)

    def read_channel(self, wait_for_close: bool = False) -> str:
        """Read what is available; with ``wait_for_close`` keep reading until the channel closes."""
        received = []
        while True:
            recv = self.read_available()
            if recv:
                received.append(recv)
            if not wait_for_close or self._is_drained():
                break
            if self._cancel_event.wait(self._config.channel_check_interval / 1000.0):
                self.logger.getChild('read_channel').info(
                    f"[READ_CANCELLED] Stopped reading {self._masked_uri}"
                )
                break
        return "".join(received)

    def wait_for_input(self) -> bool:
        """Block until at least one byte is ready to read.

        Returns False if the channel closed with nothing to read or the wait was cancelled.
        """
        outcome = poll_until(
            lambda: self._channel.recv_ready() or self._channel.closed,
            self._config.channel_check_interval,
            cancel_event=self._cancel_event,
        )
        return outcome is PollOutcome.SATISFIED and self._channel.recv_ready()

    def wait_for_prompt(self, prompt: str, max_wait: int = NO_TIMEOUT) -> PromptWaitResult:
        """Accumulate output until ``prompt`` appears, the channel closes, or ``max_wait`` ms elapse.

        ``max_wait`` of -1 waits with no time limit. The accumulated text is
        returned in every case; the status tells which condition ended the wait.
        """
        logger = self.logger.getChild('wait_for_prompt')
        if max_wait < NO_TIMEOUT:
            raise ValueError(f"max_wait must be -1 or non-negative, got {max_wait}")

        received = []
        started = time.monotonic()
        deadline = None if max_wait == NO_TIMEOUT else started + max_wait / 1000.0
        interval = self._config.channel_check_interval / 1000.0

        while True:
            recv = self.read_channel(False)
            if recv:
                received.append(recv)
                if prompt in "".join(received):
                    status = PromptStatus.MATCHED
                    break
            if self._is_drained():
                status = PromptStatus.CHANNEL_CLOSED
                break
            if deadline is not None and time.monotonic() >= deadline:
                status = PromptStatus.TIMED_OUT
                break
            if self._cancel_event.wait(interval):
                status = PromptStatus.CANCELLED
                break

        text = "".join(received)
        logger.debug(
            f"[PROMPT_{status.name}] prompt={prompt!r}, chars={len(text)}, "
            f"elapsed={time.monotonic() - started:.2f}s"
        )
        return PromptWaitResult(text=text, status=status)

    def _is_drained(self) -> bool:
        return self._channel.closed and not self._channel.recv_ready()
