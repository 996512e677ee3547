"""Connection descriptors: ``<scheme>://<user>[:<secret>]@<host>[:<port>][/<dir>]``."""
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import quote, unquote, urlsplit

REMOTE_SCHEME = "remote-shell"
REMOTE_SCHEMES = (REMOTE_SCHEME, "ssh")
FILE_SCHEME = "file"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Parsed connection descriptor. The password never appears in repr or str."""

    scheme: str
    user: Optional[str]
    password: Optional[str] = field(default=None, repr=False)
    host: Optional[str] = None
    port: Optional[int] = None
    working_dir: Optional[str] = None

    @classmethod
    def parse(cls, uri: str) -> "ConnectionDescriptor":
        parts = urlsplit(uri)
        scheme = parts.scheme.lower()
        if scheme not in REMOTE_SCHEMES and scheme != FILE_SCHEME:
            raise ValueError(f"Unsupported scheme {parts.scheme!r} in {_mask_text(uri)}")

        try:
            port = parts.port
        except ValueError as exc:
            raise ValueError(f"Invalid port in {_mask_text(uri)}: {exc}") from None

        user = unquote(parts.username) if parts.username else None
        password = unquote(parts.password) if parts.password is not None else None
        working_dir = unquote(parts.path) if parts.path else None

        if scheme in REMOTE_SCHEMES:
            if not parts.hostname:
                raise ValueError(f"Missing host in {_mask_text(uri)}")
            if not user:
                raise ValueError(f"Missing user in {_mask_text(uri)}")

        return cls(
            scheme=scheme,
            user=user,
            password=password,
            host=parts.hostname,
            port=port,
            working_dir=working_dir,
        )

    @classmethod
    def from_parts(cls, user: str, password: Optional[str], host: str,
                   working_dir: Optional[str] = None, port: Optional[int] = None) -> "ConnectionDescriptor":
        """Build a remote descriptor, percent-encoding the secret as the URI form requires."""
        uri = f"{REMOTE_SCHEME}://{quote(user, safe='')}"
        if password is not None:
            uri += f":{quote(password, safe='')}"
        uri += f"@{host}"
        if port is not None:
            uri += f":{port}"
        if working_dir:
            uri += working_dir if working_dir.startswith('/') else f"/{working_dir}"
        return cls.parse(uri)

    @property
    def is_remote(self) -> bool:
        return self.scheme in REMOTE_SCHEMES

    @property
    def is_local(self) -> bool:
        return self.scheme == FILE_SCHEME

    @property
    def local_path(self) -> str:
        if not self.is_local:
            raise ValueError(f"{self.masked} is not a local file reference")
        return self.working_dir or "/"

    def effective_port(self, default: int = 22) -> int:
        return self.port if self.port is not None else default

    @property
    def masked(self) -> str:
        """The descriptor with the ``:<secret>`` segment removed."""
        netloc = ""
        if self.user:
            netloc = f"{quote(self.user, safe='')}@"
        if self.host:
            netloc += f"[{self.host}]" if ':' in self.host else self.host
        if self.port is not None:
            netloc += f":{self.port}"
        return f"{self.scheme}://{netloc}{quote(self.working_dir or '', safe='/')}"

    def __str__(self) -> str:
        return self.masked


def _mask_text(uri: str) -> str:
    """Best-effort masking of a descriptor that failed to parse."""
    head, sep, rest = uri.partition("://")
    if not sep:
        return uri
    netloc, slash, path = rest.partition("/")
    userinfo, at, hostport = netloc.rpartition("@")
    if at:
        netloc = f"{userinfo.split(':', 1)[0]}@{hostport}"
    return f"{head}://{netloc}{slash}{path}"
