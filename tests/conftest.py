"""In-memory stand-ins for paramiko's client, transport, channel and SFTP client."""
import errno
import posixpath
from collections import deque

import paramiko
import pytest

from remote_session.config import RemoteConfig


class FakeStdin:
    def __init__(self, channel):
        self.channel = channel
        self.flushes = 0

    def write(self, data):
        self.channel.sendall(data)

    def flush(self):
        self.flushes += 1


class FakeChannel:
    """Scriptable channel.

    ``stdout``/``stderr`` are queued when the task starts; with ``auto_finish``
    the channel then reports EOF and ``exit_status``. ``responder(channel, data)``
    is called for everything written to the channel.
    """

    def __init__(self, stdout=b"", stderr=b"", exit_status=0, auto_finish=True, responder=None):
        self._out = deque()
        self._err = deque()
        self._initial_stdout = stdout
        self._initial_stderr = stderr
        self.final_status = exit_status
        self.auto_finish = auto_finish
        self.responder = responder
        self.exit_status = -1
        self._status_set = False
        self.eof_received = False
        self.closed = False
        self.close_calls = 0
        self.command = None
        self.shell_invoked = False
        self.subsystem = None
        self.pty = None
        self.sent = bytearray()

    def get_pty(self, term="vt100", width=80, height=24, width_pixels=0, height_pixels=0):
        self.pty = {
            'term': term,
            'width': width,
            'height': height,
            'width_pixels': width_pixels,
            'height_pixels': height_pixels,
        }

    def exec_command(self, command):
        self.command = command
        self._begin()

    def invoke_shell(self):
        self.shell_invoked = True
        self._begin()

    def invoke_subsystem(self, name):
        self.subsystem = name

    def _begin(self):
        if self._initial_stdout:
            self.push(self._initial_stdout)
        if self._initial_stderr:
            self._err.append(_as_bytes(self._initial_stderr))
        if self.auto_finish:
            self.finish(self.final_status)

    def push(self, data):
        self._out.append(_as_bytes(data))

    def finish(self, status=None, close=False):
        self.eof_received = True
        if status is not None:
            self.exit_status = status
            self._status_set = True
        if close:
            self.closed = True

    def recv_ready(self):
        return bool(self._out)

    def recv(self, nbytes):
        return _pop(self._out, nbytes)

    def recv_stderr_ready(self):
        return bool(self._err)

    def recv_stderr(self, nbytes):
        return _pop(self._err, nbytes)

    def exit_status_ready(self):
        return self.closed or self._status_set

    def makefile_stdin(self, mode="wb"):
        return FakeStdin(self)

    def sendall(self, data):
        if self.closed:
            raise OSError("Socket is closed")
        self.sent.extend(data)
        if self.responder:
            self.responder(self, bytes(data))

    def close(self):
        self.closed = True
        self.close_calls += 1

    @property
    def sent_text(self):
        return self.sent.decode("utf-8")


class FakeTransport:
    def __init__(self, ssh):
        self._ssh = ssh

    def is_active(self):
        return self._ssh.transport_active

    def open_session(self):
        if self._ssh.open_error:
            raise self._ssh.open_error
        if not self._ssh.channels:
            self._ssh.add_channel()
        channel = self._ssh.channels.popleft()
        self._ssh.opened.append(channel)
        return channel


class FakeClient:
    def __init__(self, ssh):
        self._ssh = ssh
        self.policy = None
        self.host_keys_file = None
        self.connect_kwargs = None
        self.close_calls = 0

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def load_host_keys(self, filename):
        self.host_keys_file = filename

    def connect(self, **kwargs):
        self.connect_kwargs = kwargs
        if self._ssh.connect_error:
            raise self._ssh.connect_error

    def get_transport(self):
        return FakeTransport(self._ssh)

    def close(self):
        self.close_calls += 1


class FakeSFTP:
    def __init__(self, ssh, channel):
        self._ssh = ssh
        self.channel = channel
        self.cwd = "/"
        self.closed = False

    def chdir(self, path):
        path = posixpath.normpath(posixpath.join(self.cwd, path))
        if path not in self._ssh.remote_dirs:
            raise IOError(errno.ENOENT, "No such file", path)
        self.cwd = path

    def putfo(self, fl, remotepath):
        self._ssh.remote_files[posixpath.join(self.cwd, remotepath)] = fl.read()

    def getfo(self, remotepath, fl):
        path = posixpath.join(self.cwd, remotepath)
        if path not in self._ssh.remote_files:
            raise IOError(errno.ENOENT, "No such file", path)
        fl.write(self._ssh.remote_files[path])

    def close(self):
        self.closed = True


class FakeSSH:
    """Registry behind the fakes: queued channels, created clients, remote file system."""

    def __init__(self):
        self.channels = deque()
        self.opened = []
        self.clients = []
        self.sftp_clients = []
        self.connect_error = None
        self.open_error = None
        self.transport_active = True
        self.remote_dirs = {"/"}
        self.remote_files = {}

    def add_channel(self, **kwargs):
        channel = FakeChannel(**kwargs)
        self.channels.append(channel)
        return channel

    def make_client(self):
        client = FakeClient(self)
        self.clients.append(client)
        return client

    def make_sftp(self, channel):
        sftp = FakeSFTP(self, channel)
        self.sftp_clients.append(sftp)
        return sftp


def _as_bytes(data):
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _pop(queue, nbytes):
    if not queue:
        return b""
    data = queue.popleft()
    if len(data) > nbytes:
        queue.appendleft(data[nbytes:])
        data = data[:nbytes]
    return data


@pytest.fixture
def fake_ssh(monkeypatch):
    ssh = FakeSSH()
    monkeypatch.setattr(paramiko, "SSHClient", ssh.make_client)
    monkeypatch.setattr(paramiko, "SFTPClient", ssh.make_sftp)
    return ssh


@pytest.fixture
def fast_config(tmp_path):
    """Settings with 1 ms poll intervals and an empty SSH folder."""
    ssh_dir = tmp_path / "ssh"
    ssh_dir.mkdir()
    return RemoteConfig(
        completion_check_interval=1,
        disconnect_check_interval=1,
        disconnect_check_attempts=50,
        channel_check_interval=1,
        ssh_dir=str(ssh_dir),
    )
