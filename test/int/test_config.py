
from os import environ

import pytest

from wvpytest import *

from gitdav.config import InvalidArgument, ServeConfig


def test_defaults(tmpdir):
    c = ServeConfig(root=tmpdir).validate()
    WVPASSEQ((c.addr, c.port, c.locking, c.session_timeout),
             ('0.0.0.0', 5005, 'cooperative-stub', 300))


def test_environment(tmpdir):
    environ['GITDAV_SESSION_TIMEOUT'] = '42'
    environ['GITDAV_LOCKING'] = 'none'
    c = ServeConfig.from_environment(tmpdir)
    WVPASSEQ((c.session_timeout, c.locking), (42, 'none'))
    c = ServeConfig.from_environment(tmpdir, session_timeout=None)
    WVPASSEQ(c.session_timeout, None)
    environ['GITDAV_SESSION_TIMEOUT'] = 'soon'
    with pytest.raises(InvalidArgument):
        ServeConfig.from_environment(tmpdir)


@pytest.mark.parametrize('kwargs', [
    dict(port=-1),
    dict(port=65536),
    dict(port='http'),
    dict(addr='localhost'),
    dict(addr='::1'),
    dict(locking='sometimes'),
    dict(locking='real'),
    dict(session_timeout=0),
    dict(shutdown_grace=-1),
])
def test_invalid(tmpdir, kwargs):
    with pytest.raises(InvalidArgument):
        ServeConfig(root=tmpdir, **kwargs).validate()


def test_root_must_be_a_directory(tmpdir):
    with pytest.raises(InvalidArgument):
        ServeConfig(root=tmpdir + b'/nonesuch').validate()
