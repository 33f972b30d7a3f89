
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from os import environ
import os, sys


LOCKING_MODES = ('none', 'cooperative-stub', 'real')

DEFAULT_PORT = 5005
DEFAULT_ADDR = '0.0.0.0'
DEFAULT_SESSION_TIMEOUT = 5 * 60


class InvalidArgument(ValueError):
    pass


def _env_int(name, default):
    v = environ.get(name)
    if v is None or v == '':
        return default
    try:
        return int(v)
    except ValueError:
        raise InvalidArgument(f'{name} must be an integer, not {v!r}')


@dataclass
class ServeConfig:
    """Everything the serving layer and the session timer need.

    root is the (bytes) directory exposed to clients.  A session_timeout
    of None disables the session timer.

    """
    root: bytes
    addr: str = DEFAULT_ADDR
    port: int = DEFAULT_PORT
    locking: str = 'cooperative-stub'
    session_timeout: int = DEFAULT_SESSION_TIMEOUT
    shutdown_grace: float = 1.0
    hide_macos_metadata: bool = field(
        default_factory=lambda: sys.platform == 'darwin')
    max_body_size: int = 4 * 1024 ** 3

    @classmethod
    def from_environment(cls, root, **kwargs):
        """Return a config for root, taking GITDAV_SESSION_TIMEOUT and
        GITDAV_LOCKING from the environment unless given in kwargs.

        """
        if 'session_timeout' not in kwargs:
            kwargs['session_timeout'] = \
                _env_int('GITDAV_SESSION_TIMEOUT', DEFAULT_SESSION_TIMEOUT)
        if 'locking' not in kwargs:
            kwargs['locking'] = environ.get('GITDAV_LOCKING',
                                            'cooperative-stub')
        return cls(root=root, **kwargs)

    def validate(self):
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise InvalidArgument(f'port must be an integer, not {self.port!r}')
        if not 0 <= self.port <= 65535:
            raise InvalidArgument(f'port {self.port} is out of range')
        try:
            IPv4Address(self.addr)
        except ValueError:
            raise InvalidArgument(f'{self.addr!r} is not an IPv4 address')
        if self.locking not in LOCKING_MODES:
            raise InvalidArgument(f'unknown locking mode {self.locking!r}'
                                  f' (expected one of {", ".join(LOCKING_MODES)})')
        if self.locking == 'real':
            raise InvalidArgument('locking mode "real" is not available yet')
        if self.session_timeout is not None and self.session_timeout <= 0:
            raise InvalidArgument('session timeout must be positive')
        if self.shutdown_grace < 0:
            raise InvalidArgument('shutdown grace must not be negative')
        if not os.path.isdir(self.root):
            raise InvalidArgument(f'{os.fsdecode(self.root)!r} is not a directory')
        return self
