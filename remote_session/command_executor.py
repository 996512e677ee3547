"""Command execution, interactive shells and file transfer over SSH."""
import io
import logging
import posixpath
import shlex
import threading
from pathlib import Path
from typing import BinaryIO, Optional, Union

import paramiko

from .config import RemoteConfig
from .datastructures import ChannelKind
from .descriptor import ConnectionDescriptor
from .errors import FileDownloadError, FileUploadError, RemoteError
from .session_manager import SessionConnector, SessionHandle

Location = Union[str, ConnectionDescriptor]


def _descriptor(location: Location) -> ConnectionDescriptor:
    if isinstance(location, ConnectionDescriptor):
        return location
    return ConnectionDescriptor.parse(location)


class CommandExecutor:
    """Runs one remote round trip per call, always releasing the session afterwards."""

    def __init__(self, config: Optional[RemoteConfig] = None,
                 connector: Optional[SessionConnector] = None):
        self._connector = connector or SessionConnector(config)
        self._config = config or self._connector.config
        self.logger = logging.getLogger('remote_session.command_executor')

    @property
    def config(self) -> RemoteConfig:
        return self._config

    def open_session(self, kind: ChannelKind, location: Location, pty: bool = False,
                     cancel_event: Optional[threading.Event] = None) -> SessionHandle:
        return SessionHandle(kind, _descriptor(location), self._config, self._connector,
                             pty=pty, cancel_event=cancel_event)

    def exec(self, uri: Location, command: str,
             cancel_event: Optional[threading.Event] = None) -> str:
        """Run ``command`` in the descriptor's working directory and return its trimmed stdout.

        Raises ExecutionFailedError (carrying stderr) on a non-zero exit status.
        Setting ``cancel_event`` stops the wait and returns the output received so far.
        """
        logger = self.logger.getChild('exec')
        with self.open_session(ChannelKind.EXEC, uri, cancel_event=cancel_event) as session:
            if session.work_dir:
                command = f"cd {shlex.quote(session.work_dir)} && {command}"
            logger.info(f"[EXEC_REQ] {session.masked_uri}, cmd={command[:100]}")
            return self.exec_in(session, command)

    def exec_in(self, session: SessionHandle, command: str) -> str:
        """Run ``command`` on an already-open exec session."""
        logger = self.logger.getChild('exec_in')
        stdout = io.BytesIO()
        stderr = io.BytesIO()
        session.execute(command, stdout=stdout, stderr=stderr)
        encoding = self._config.encoding
        output = stdout.getvalue().decode(encoding, errors='replace')
        if session.cancelled:
            logger.warning(f"[EXEC_CANCELLED] {session.masked_uri}: returning {len(output)} chars")
            return output.strip()
        session.assert_exit_status(stderr.getvalue().decode(encoding, errors='replace'))
        logger.debug(f"[EXEC_DONE] {session.masked_uri}: {len(output)} chars")
        return output.strip()

    def shell(self, uri: Location, script: str, output: BinaryIO,
              cancel_event: Optional[threading.Event] = None) -> None:
        """Run ``script`` in an interactive shell, copying the terminal output into ``output``.

        The shell first changes into the working directory (if any) and is told
        to exit after the script, so the session ends on its own.
        """
        lines = []
        descriptor = _descriptor(uri)
        if descriptor.working_dir:
            lines.append(f"cd {shlex.quote(descriptor.working_dir)}")
        lines.append(script)
        lines.append("exit")
        feed = ("\n".join(lines) + "\n").encode(self._config.encoding)
        with self.open_session(ChannelKind.SHELL, descriptor, cancel_event=cancel_event) as session:
            self._run_shell(session, output, feed=feed)

    def shell_text(self, uri: Location, script: str,
                   cancel_event: Optional[threading.Event] = None) -> str:
        """Run ``script`` in an interactive shell and return the terminal output."""
        buffer = io.BytesIO()
        try:
            self.shell(uri, script, buffer, cancel_event)
        except RemoteError:
            self.logger.getChild('shell_text').warning(
                buffer.getvalue().decode(self._config.encoding, errors='replace')
            )
            raise
        return buffer.getvalue().decode(self._config.encoding, errors='replace')

    def shell_stream(self, uri: Location, input_stream: BinaryIO, output: BinaryIO,
                     cancel_event: Optional[threading.Event] = None) -> None:
        """Run an interactive shell fed from ``input_stream`` as its data arrives.

        Input is forwarded chunk by chunk while the shell runs, so a terminal or
        pipe can drive the session interactively. The session ends when the
        remote shell exits.
        """
        with self.open_session(ChannelKind.SHELL, uri, cancel_event=cancel_event) as session:
            self._run_shell(session, output, input_stream=input_stream)

    def _run_shell(self, session: SessionHandle, output: BinaryIO, feed: Optional[bytes] = None,
                   input_stream: Optional[BinaryIO] = None) -> None:
        logger = self.logger.getChild('shell')
        logger.info(f"Starting shell for {session.masked_uri}")
        session.execute(feed=feed, stdout=output, stderr=output, input_stream=input_stream)
        if session.cancelled:
            logger.warning(f"[SHELL_CANCELLED] {session.masked_uri}: keeping partial output")
            return
        session.assert_exit_status(session.outcome().stdout)

    def transfer_file(self, from_uri: Location, to_uri: Location) -> None:
        """Copy a file between the local file system and a remote host.

        Exactly one side must be a ``file://`` reference and the other a
        remote one; the direction follows from which is which.
        """
        source = _descriptor(from_uri)
        target = _descriptor(to_uri)
        if source.is_local and target.is_remote:
            self.upload(source, target)
        elif source.is_remote and target.is_local:
            self.download(source, target)
        else:
            raise ValueError("Source and target URIs must refer to opposing locations")

    def upload(self, source: ConnectionDescriptor, target: ConnectionDescriptor) -> None:
        """Upload into the target directory, keeping the source file's base name."""
        logger = self.logger.getChild('upload')
        local_path = Path(source.local_path)
        remote_dir = target.working_dir or "."
        with self.open_session(ChannelKind.SFTP, target) as session:
            logger.info(f"Uploading {source.masked} --> {session.masked_uri}")
            try:
                with open(local_path, 'rb') as fis:
                    sftp = session.sftp()
                    sftp.chdir(remote_dir)
                    sftp.putfo(fis, local_path.name)
            except (OSError, paramiko.SSHException) as e:
                logger.error(f"Upload to {session.masked_uri} failed: {e}")
                raise FileUploadError(f"Cannot upload {source.masked} to {session.masked_uri}: {e}") from e

    def download(self, source: ConnectionDescriptor, target: ConnectionDescriptor) -> None:
        """Download into the local target directory under the remote file's base name."""
        logger = self.logger.getChild('download')
        remote_path = source.working_dir or ""
        remote_name = posixpath.basename(remote_path)
        if not remote_name:
            raise ValueError(f"{source.masked} does not name a remote file")
        out = Path(target.local_path) / remote_name
        with self.open_session(ChannelKind.SFTP, source) as session:
            logger.info(f"Downloading {session.masked_uri} --> {target.masked}")
            try:
                with open(out, 'wb') as fos:
                    sftp = session.sftp()
                    sftp.chdir(posixpath.dirname(remote_path) or "/")
                    sftp.getfo(remote_name, fos)
            except (OSError, paramiko.SSHException) as e:
                logger.error(f"Download from {session.masked_uri} failed: {e}")
                raise FileDownloadError(f"Cannot download {session.masked_uri} to {target.masked}: {e}") from e
