"""Exceptions raised by remote session operations.

Every exception that refers to a connection carries its masked URI; the raw
descriptor (which may embed a password) never reaches a message.
"""
from typing import Optional


class RemoteError(Exception):
    """Base exception for remote session operations."""


class CredentialsUnspecifiedError(RemoteError):
    """Neither a password nor a private key file is available."""

    def __init__(self, masked_uri: Optional[str] = None):
        self.masked_uri = masked_uri
        target = f" for {masked_uri}" if masked_uri else ""
        super().__init__(f"Neither password nor private key were specified{target}")


class SessionInstantiationError(RemoteError, ConnectionError):
    """Transport connect/authentication failure or timeout."""

    def __init__(self, masked_uri: str, reason: str = ""):
        self.masked_uri = masked_uri
        detail = f" - {reason}" if reason else ""
        super().__init__(f"Cannot create session for {masked_uri}{detail}")


class ChannelInstantiationError(RemoteError):
    """The remote side rejected a channel open request."""

    def __init__(self, kind, masked_uri: str, reason: str = ""):
        self.kind = kind
        self.masked_uri = masked_uri
        detail = f" - {reason}" if reason else ""
        super().__init__(f"Cannot create {kind.value} channel for {masked_uri}{detail}")


class ChannelClosedError(RemoteError):
    """An operation was attempted on a session that has already been closed."""


class ExecutionFailedError(RemoteError):
    """Remote task finished with a non-zero exit status."""

    def __init__(self, exit_status: int, masked_uri: str, task_output: Optional[str] = None):
        self.exit_status = exit_status
        self.masked_uri = masked_uri
        self.task_output = task_output
        message = f"Exit status {exit_status} for {masked_uri}"
        if task_output:
            message += " => check task output for details"
        super().__init__(message)


class StreamAcquisitionError(RemoteError, OSError):
    """The channel's input or output stream could not be obtained."""


class FileTransferError(RemoteError):
    """Byte copy between local and remote file systems failed."""


class FileUploadError(FileTransferError):
    """Upload of a local file to a remote host failed."""


class FileDownloadError(FileTransferError):
    """Download of a remote file to the local file system failed."""
