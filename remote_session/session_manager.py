"""SSH session and channel lifecycle using Paramiko."""
import io
import logging
import threading
from typing import BinaryIO, Optional, Union

import paramiko

from .config import RemoteConfig
from .datastructures import ChannelKind, Credentials, ExitOutcome
from .descriptor import ConnectionDescriptor
from .errors import (
    ChannelClosedError,
    ChannelInstantiationError,
    CredentialsUnspecifiedError,
    ExecutionFailedError,
    SessionInstantiationError,
)
from .polling import poll_until
from .streams import ChannelStreams


class SessionConnector:
    """Opens authenticated SSH sessions and typed channels on them."""

    def __init__(self, config: Optional[RemoteConfig] = None):
        self._config = config or RemoteConfig()
        self.logger = logging.getLogger('remote_session.connector')

    @property
    def config(self) -> RemoteConfig:
        return self._config

    def resolve_credentials(self, descriptor: ConnectionDescriptor) -> Credentials:
        """Pick password or private key authentication for ``descriptor``.

        A password embedded in the descriptor wins. Otherwise the configured
        key file must exist, either at its explicit path or in the SSH folder.
        """
        logger = self.logger.getChild('credentials')
        if descriptor.password is not None:
            logger.debug(f"Using password authentication for {descriptor.masked}")
            return Credentials(password=descriptor.password)

        key_path = self._config.key_path()
        if key_path is None:
            logger.error(f"No password and no key file '{self._config.key_name}' for {descriptor.masked}")
            raise CredentialsUnspecifiedError(descriptor.masked)

        logger.debug(f"Using key {key_path} for {descriptor.masked}")
        return Credentials(key_filename=key_path, passphrase=self._config.key_passphrase)

    def connect(self, descriptor: ConnectionDescriptor) -> paramiko.SSHClient:
        """Open an authenticated session to the descriptor's host.

        The returned client is only used to open channels. Host-key checking is
        relaxed (unknown keys accepted) when ``ignore_known_hosts`` is set or
        no known_hosts file exists in the SSH folder.
        """
        logger = self.logger.getChild('connect')
        credentials = self.resolve_credentials(descriptor)
        port = descriptor.effective_port(self._config.ssh_port)

        client = paramiko.SSHClient()
        known_hosts = None if self._config.ignore_known_hosts else self._config.known_hosts_path()
        if known_hosts is not None:
            client.load_host_keys(str(known_hosts))
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
            logger.debug(f"Strict host-key checking against {known_hosts}")
        else:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        timeout = self._config.session_connect_timeout / 1000.0
        connect_kwargs = {
            'hostname': descriptor.host,
            'port': port,
            'username': descriptor.user,
            'timeout': timeout,
            'banner_timeout': timeout,
            'auth_timeout': timeout,
            'allow_agent': False,
            'look_for_keys': False,
        }
        if credentials.uses_key:
            connect_kwargs['key_filename'] = str(credentials.key_filename)
            if credentials.passphrase is not None:
                connect_kwargs['passphrase'] = credentials.passphrase
        else:
            connect_kwargs['password'] = credentials.password

        try:
            logger.debug(f"[CONN] Attempting connection to {descriptor.masked} (port {port})")
            client.connect(**connect_kwargs)
        except (paramiko.AuthenticationException, paramiko.SSHException,
                paramiko.ssh_exception.NoValidConnectionsError, OSError) as e:
            logger.error(f"[CONN] Connection failed to {descriptor.masked}: {type(e).__name__}: {e}")
            client.close()
            raise SessionInstantiationError(descriptor.masked, f"{type(e).__name__}: {e}") from e

        logger.info(f"Session established: {descriptor.masked}")
        return client

    def open_channel(self, client: paramiko.SSHClient, kind: ChannelKind,
                     descriptor: ConnectionDescriptor, pty: bool = False) -> paramiko.Channel:
        """Open a channel of ``kind``; the channel is set up but its task is not started."""
        logger = self.logger.getChild('open_channel')
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            raise ChannelInstantiationError(kind, descriptor.masked, "transport is not active")

        try:
            channel = transport.open_session()
            if pty or kind.requires_pty:
                channel.get_pty(
                    term=self._config.terminal_type,
                    width=self._config.terminal_width,
                    height=self._config.terminal_height,
                    width_pixels=self._config.terminal_h_resolution,
                    height_pixels=self._config.terminal_v_resolution,
                )
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"Cannot open {kind.value} channel for {descriptor.masked}: {e}")
            raise ChannelInstantiationError(kind, descriptor.masked, str(e)) from e

        logger.debug(f"Opened {kind.value} channel for {descriptor.masked} (pty={pty or kind.requires_pty})")
        return channel


class SessionHandle:
    """Owns one session and one channel; releases both exactly once.

    Use as a context manager so the session is disconnected on every exit path::

        with SessionHandle(ChannelKind.EXEC, "remote-shell://user:pw@host/dir") as session:
            session.execute("ls")
            session.assert_exit_status("")
    """

    def __init__(self, kind: ChannelKind, descriptor: Union[str, ConnectionDescriptor],
                 config: Optional[RemoteConfig] = None,
                 connector: Optional[SessionConnector] = None,
                 pty: bool = False,
                 cancel_event: Optional[threading.Event] = None):
        self.logger = logging.getLogger('remote_session.session')
        self.kind = kind
        self.descriptor = (descriptor if isinstance(descriptor, ConnectionDescriptor)
                           else ConnectionDescriptor.parse(descriptor))
        if not self.descriptor.is_remote:
            raise ValueError(f"{self.descriptor.masked} does not refer to a remote host")
        self._connector = connector or SessionConnector(config)
        self._config = config or self._connector.config
        # Shared with the caller when given, so another thread can stop our waits
        self._cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self._stdout_transcript = io.BytesIO()
        self._stderr_transcript = io.BytesIO()
        self._started = False
        self._closed = False
        self._sftp: Optional[paramiko.SFTPClient] = None
        self._client: Optional[paramiko.SSHClient] = None
        self._channel: Optional[paramiko.Channel] = None

        self._client = self._connector.connect(self.descriptor)
        try:
            self._channel = self._connector.open_channel(self._client, kind, self.descriptor, pty=pty)
        except Exception:
            self.close()
            raise

    def __enter__(self) -> "SessionHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def masked_uri(self) -> str:
        return self.descriptor.masked

    @property
    def work_dir(self) -> Optional[str]:
        return self.descriptor.working_dir

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def channel(self) -> paramiko.Channel:
        self._ensure_open()
        return self._channel

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Ask any wait in progress on this session to stop. Does not close the session."""
        self.logger.getChild('cancel').info(f"Cancellation requested for {self.masked_uri}")
        self._cancel_event.set()

    def start(self, command: Optional[str] = None) -> None:
        """Start the channel's task: run ``command`` (exec), a login shell (shell) or the sftp subsystem."""
        channel = self.channel
        if self._started:
            raise ChannelClosedError(f"{self.kind.value} channel for {self.masked_uri} was already started")
        if self.kind is ChannelKind.EXEC:
            if not command:
                raise ValueError("An exec channel needs a command")
            channel.exec_command(command)
        elif self.kind is ChannelKind.SHELL:
            channel.invoke_shell()
        else:
            channel.invoke_subsystem(self.kind.subsystem)
        self._started = True
        self.logger.getChild('start').info(f"Started {self.kind.value} for {self.masked_uri}")

    def execute(self, command: Optional[str] = None, feed: Optional[bytes] = None,
                stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None,
                input_stream: Optional[BinaryIO] = None) -> None:
        """Start the task and block until the remote side signals end-of-file.

        ``feed`` is sent to the channel's stdin once the task starts. An
        ``input_stream`` is copied to stdin chunk by chunk on a background
        thread while the task runs, so interactive input reaches the remote
        side as it is typed. Output is copied into ``stdout``/``stderr`` (when
        given) as it arrives, and is always kept in the session transcript.
        """
        logger = self.logger.getChild('execute')
        self.start(command)
        channel = self._channel
        if feed:
            channel.sendall(feed)

        feeder = None
        if input_stream is not None:
            feeder = threading.Thread(
                target=self._feed_input,
                args=(input_stream,),
                name=f"feed-{self.descriptor.host}",
                daemon=True,
            )
            feeder.start()

        def finished() -> bool:
            self._pump(stdout, stderr)
            return channel.eof_received

        outcome = poll_until(
            finished,
            self._config.completion_check_interval,
            cancel_event=self._cancel_event,
        )
        self._pump(stdout, stderr)
        if feeder is not None:
            # A feeder blocked on a read of its input is left behind as a daemon thread
            feeder.join(self._config.completion_check_interval / 1000.0)
        logger.debug(f"[EXEC_DONE] {self.masked_uri}: {outcome.value}")

    def _feed_input(self, input_stream: BinaryIO) -> None:
        logger = self.logger.getChild('feed')
        channel = self._channel
        read = getattr(input_stream, 'read1', input_stream.read)
        size = self._config.channel_buffer_size
        sent = 0
        while not self._cancel_event.is_set() and not channel.closed:
            chunk = read(size)
            if not chunk:
                break
            try:
                channel.sendall(chunk)
            except OSError as e:
                logger.debug(f"Input stopped for {self.masked_uri}: {e}")
                break
            sent += len(chunk)
        logger.debug(f"[FEED_DONE] {sent} bytes to {self.masked_uri}")

    def _pump(self, stdout: Optional[BinaryIO], stderr: Optional[BinaryIO]) -> None:
        channel = self._channel
        size = self._config.channel_buffer_size
        while channel.recv_ready():
            data = channel.recv(size)
            if not data:
                break
            self._stdout_transcript.write(data)
            if stdout is not None:
                stdout.write(data)
        while channel.recv_stderr_ready():
            data = channel.recv_stderr(size)
            if not data:
                break
            self._stderr_transcript.write(data)
            if stderr is not None:
                stderr.write(data)

    def streams(self) -> ChannelStreams:
        return ChannelStreams(self.channel, self._config, self._cancel_event, self.masked_uri)

    def sftp(self) -> paramiko.SFTPClient:
        """SFTP client over this session's started sftp channel."""
        if self.kind is not ChannelKind.SFTP:
            raise ValueError(f"{self.kind.value} channel cannot serve sftp")
        if self._sftp is None:
            if not self._started:
                self.start()
            self._sftp = paramiko.SFTPClient(self.channel)
        return self._sftp

    @property
    def exit_status(self) -> int:
        """Remote exit status; -1 if the remote side never reported one.

        Still readable after the session is closed.
        """
        channel = self._channel
        if channel is None:
            return -1
        poll_until(
            channel.exit_status_ready,
            self._config.disconnect_check_interval,
            max_attempts=self._config.disconnect_check_attempts,
            cancel_event=self._cancel_event,
        )
        return channel.exit_status if channel.exit_status_ready() else -1

    def outcome(self) -> ExitOutcome:
        encoding = self._config.encoding
        return ExitOutcome(
            exit_status=self.exit_status,
            stdout=self._stdout_transcript.getvalue().decode(encoding, errors='replace'),
            stderr=self._stderr_transcript.getvalue().decode(encoding, errors='replace'),
        )

    def assert_exit_status(self, task_output: Optional[str] = None) -> None:
        """Raise ExecutionFailedError unless the remote task exited with status 0."""
        exit_status = self.exit_status
        if exit_status != 0:
            self.logger.getChild('exit_status').warning(
                f"Exit status {exit_status} for {self.masked_uri}"
            )
            raise ExecutionFailedError(exit_status, self.masked_uri, task_output)

    def wait_channel(self) -> bool:
        """Wait (bounded) until the channel reports closed. Returns whether it did."""
        if self._channel is None:
            return True
        channel = self._channel
        outcome = poll_until(
            lambda: channel.closed,
            self._config.disconnect_check_interval,
            max_attempts=self._config.disconnect_check_attempts,
            cancel_event=self._cancel_event,
        )
        if not outcome:
            self.logger.getChild('wait_channel').warning(
                f"Channel for {self.masked_uri} not closed ({outcome.value})"
            )
        return bool(outcome)

    def disconnect(self, wait_for_close: bool = False) -> None:
        if wait_for_close and not self._closed:
            self.wait_channel()
        self.close()

    def close(self) -> None:
        """Release channel and session. Safe to call more than once."""
        logger = self.logger.getChild('close')
        if self._closed:
            return
        self._closed = True

        if self._sftp is not None:
            try:
                self._sftp.close()
            except Exception as e:
                logger.warning(f"Error closing sftp client for {self.masked_uri}: {e}")
        if self._channel is not None:
            try:
                self._channel.close()
            except Exception as e:
                logger.warning(f"Error closing channel for {self.masked_uri}: {e}")
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning(f"Error closing client for {self.masked_uri}: {e}")
        logger.info(f"Session closed: {self.masked_uri}")

    def _ensure_open(self) -> None:
        if self._closed:
            raise ChannelClosedError(f"Session for {self.masked_uri} is closed")
