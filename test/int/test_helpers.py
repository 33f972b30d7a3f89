
from io import BytesIO
from ipaddress import IPv4Address
from subprocess import CalledProcessError, PIPE
import os

import pytest

from wvpytest import *

from gitdav.helpers import (atomically_replaced_file,
                            exo,
                            format_duration,
                            is_under,
                            local_ipv4,
                            mkdirp,
                            read_chunks,
                            stat_if_exists)


def test_atomically_replaced_file(tmpdir):
    target = tmpdir + b'/test-atomic-write'

    with atomically_replaced_file(target, mode='w') as f:
        f.write('asdf')
        WVPASSEQ(f.mode, 'w')
    with open(target, 'r') as f:
        WVPASSEQ(f.read(), 'asdf')

    try:
        with atomically_replaced_file(target, mode='w') as f:
            f.write('wxyz')
            raise Exception()
    except Exception:
        pass
    with open(target) as f:
        WVPASSEQ(f.read(), 'asdf')

    with atomically_replaced_file(target, mode='wb') as f:
        f.write(os.urandom(20))
        WVPASSEQ(f.mode, 'wb')

    replacement = atomically_replaced_file(target, mode='wb')
    with replacement as f:
        f.write(b'never')
        replacement.cancel()
    with open(target, 'rb') as f:
        WVPASSNE(f.read(), b'never')
    WVPASSEQ(os.listdir(tmpdir), [b'test-atomic-write'])


def test_stat_if_exists(tmpdir):
    WVPASSEQ(stat_if_exists(tmpdir + b'/nonesuch'), None)
    with open(tmpdir + b'/file', 'wb'):
        pass
    WVPASSEQ(stat_if_exists(tmpdir + b'/file/below'), None)
    WVPASS(stat_if_exists(tmpdir + b'/file'))


def test_mkdirp(tmpdir):
    mkdirp(tmpdir + b'/a/b/c')
    mkdirp(tmpdir + b'/a/b/c')
    WVPASS(os.path.isdir(tmpdir + b'/a/b/c'))


def test_format_duration():
    WVPASSEQ(format_duration(0), '00:00:00')
    WVPASSEQ(format_duration(59), '00:00:59')
    WVPASSEQ(format_duration(300), '00:05:00')
    WVPASSEQ(format_duration(3725), '01:02:05')
    WVPASSEQ(format_duration(-3), '00:00:00')


def test_is_under():
    WVPASS(is_under(b'/srv/repos', b'/srv/repos'))
    WVPASS(is_under(b'/srv/repos/x.git', b'/srv/repos'))
    WVPASS(is_under(b'/srv/repos/x.git', b'/srv/repos/'))
    WVPASS(is_under(b'/anything', b'/'))
    WVFAIL(is_under(b'/srv/repos2', b'/srv/repos'))
    WVFAIL(is_under(b'/srv', b'/srv/repos'))


def test_local_ipv4():
    WVPASS(IPv4Address(local_ipv4()))


def test_exo():
    out, err, p = exo([b'sh', b'-c', b'echo out; echo err >&2'], stderr=PIPE)
    WVPASSEQ((out, err, p.returncode), (b'out\n', b'err\n', 0))
    WVPASSEQ(exo([b'cat'], input=b'fed in')[0], b'fed in')
    WVPASSEQ(exo([b'cat'])[0], b'')
    out, err, p = exo([b'sh', b'-c', b'exit 3'], check=False)
    WVPASSEQ(p.returncode, 3)
    with pytest.raises(CalledProcessError) as ex:
        exo([b'sh', b'-c', b'exit 3'])
    WVPASSEQ(ex.value.cmd, "sh -c 'exit 3'")


def test_read_chunks():
    WVPASSEQ(list(read_chunks(BytesIO(b''))), [])
    WVPASSEQ(list(read_chunks(BytesIO(b'abcdefg'), 3)), [b'abc', b'def', b'g'])
