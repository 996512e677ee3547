"""Process-wide settings for remote sessions.

Settings are read once (normally from ``REMOTE_*`` environment variables) into
an immutable :class:`RemoteConfig` which is then passed to every component
that needs it.
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger('remote_session.config')

CELL_WIDTH = 7
CELL_HEIGHT = 9

_TRUE_VALUES = ('1', 'true', 'yes', 'on')
_FALSE_VALUES = ('0', 'false', 'no', 'off')


@dataclass(frozen=True)
class RemoteConfig:
    """Immutable remote session settings. Intervals and timeouts are milliseconds."""

    key_name: str = "id_rsa"
    key_passphrase: Optional[str] = None
    # A known_hosts file in the SSH folder is enforced when present, unless this is set
    ignore_known_hosts: bool = False
    session_connect_timeout: int = 5000
    ssh_port: int = 22
    terminal_height: int = 24
    terminal_width: int = 132
    terminal_h_resolution: Optional[int] = None
    terminal_v_resolution: Optional[int] = None
    terminal_type: str = "ansi"
    completion_check_interval: int = 100
    disconnect_check_attempts: int = 600
    disconnect_check_interval: int = 100
    channel_check_interval: int = 100
    channel_buffer_size: int = 100 * 1024
    encoding: str = "utf-8"
    ssh_dir: Optional[str] = None

    def __post_init__(self):
        if self.terminal_h_resolution is None:
            object.__setattr__(self, 'terminal_h_resolution', self.terminal_width * CELL_WIDTH)
        if self.terminal_v_resolution is None:
            object.__setattr__(self, 'terminal_v_resolution', self.terminal_height * CELL_HEIGHT)
        if self.channel_buffer_size <= 0:
            raise ValueError(f"channel_buffer_size must be positive, got {self.channel_buffer_size}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RemoteConfig":
        """Build settings from ``REMOTE_<FIELD>`` environment variables.

        Values that cannot be converted are logged and the default is kept.
        """
        environ = os.environ if environ is None else environ
        kwargs = {}
        for f in fields(cls):
            raw = environ.get(_env_name(f.name))
            if raw is None:
                continue
            converted = _convert(f.name, f.default, raw)
            if converted is not None:
                kwargs[f.name] = converted
        return cls(**kwargs)

    @property
    def ssh_folder(self) -> Path:
        if self.ssh_dir:
            return Path(self.ssh_dir).expanduser()
        return Path.home() / '.ssh'

    def key_path(self) -> Optional[Path]:
        """Resolve the private key file.

        A key name that is itself an existing path is used as-is; otherwise the
        key must live in the SSH folder. Returns None if neither exists.
        """
        if not self.key_name:
            return None
        key_path = Path(self.key_name).expanduser()
        if key_path.exists():
            return key_path
        key_path = self.ssh_folder / self.key_name
        if key_path.exists():
            return key_path
        return None

    def known_hosts_path(self) -> Optional[Path]:
        path = self.ssh_folder / 'known_hosts'
        return path if path.exists() else None


_ENV_NAMES = {
    'key_name': 'REMOTE_SSH_KEY_NAME',
    'key_passphrase': 'REMOTE_SSH_KEY_PASS',
    'ssh_port': 'REMOTE_SSH_PORT_NUMBER',
}


def _env_name(field_name: str) -> str:
    return _ENV_NAMES.get(field_name, f"REMOTE_{field_name.upper()}")


def _convert(name: str, default, raw: str):
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        logger.warning(f"Ignoring invalid boolean for {_env_name(name)}: {raw!r}")
        return None
    if isinstance(default, int) or name in ('terminal_h_resolution', 'terminal_v_resolution'):
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid integer for {_env_name(name)}: {raw!r}")
            return None
    return raw
