"""Data structures for remote session management."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class ChannelKind(Enum):
    EXEC = "exec"
    SHELL = "shell"
    SFTP = "sftp"

    @property
    def requires_pty(self) -> bool:
        return self is ChannelKind.SHELL

    @property
    def subsystem(self) -> Optional[str]:
        return "sftp" if self is ChannelKind.SFTP else None


class PromptStatus(Enum):
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    CHANNEL_CLOSED = "channel_closed"
    CANCELLED = "cancelled"  # Cancel event set while polling


@dataclass(frozen=True)
class PromptWaitResult:
    """Text accumulated while waiting for a prompt, and why the wait ended."""

    text: str
    status: PromptStatus

    @property
    def matched(self) -> bool:
        return self.status is PromptStatus.MATCHED

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class ExitOutcome:
    exit_status: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_status == 0


@dataclass(frozen=True)
class Credentials:
    password: Optional[str] = field(default=None, repr=False)
    key_filename: Optional[Path] = None
    passphrase: Optional[str] = field(default=None, repr=False)

    @property
    def uses_key(self) -> bool:
        return self.password is None and self.key_filename is not None
