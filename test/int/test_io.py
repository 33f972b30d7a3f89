
from wvpytest import *

from gitdav import io
from gitdav.io import enc_shs, log, path_msg


def test_enc_shs():
    assert "''" == enc_shs('')
    assert 'plain' == enc_shs('plain')
    assert "'a|b'" == enc_shs('a|b')
    assert "'x y'" == enc_shs('x y')
    assert r"$'\x0a'" == enc_shs('\n')
    assert r"$'\''" == enc_shs("'")
    assert r"$'\x00'" == enc_shs('\0')
    assert r"$'a\\b\x7f'" == enc_shs('a\\b\x7f')
    for needs_dsq in range(32):
        assert enc_shs(chr(needs_dsq)) == r"$'\x%02x'" % needs_dsq
    for needs_sq in r'|&;<>()$`\" *?[]^!#~=%{,}':
        assert "'%s'" % needs_sq == enc_shs(needs_sq)

def test_path_msg():
    WVPASSEQ(path_msg(b'x.git'), 'x.git')
    WVPASSEQ(path_msg(b'/srv/my repos/x.git'), "'/srv/my repos/x.git'")
    WVPASSEQ(path_msg(b'bad\xffname'), r"$'bad\xffname'")
    WVPASSEQ(path_msg('already a str'), "'already a str'")

def test_log(capfd, monkeypatch):
    log('plain message\n')
    log(b'bytes message\n')
    WVPASSEQ(capfd.readouterr().err, 'plain message\nbytes message\n')

    monkeypatch.setattr(io, 'buglvl', 0)
    io.debug1('hidden\n')
    WVPASSEQ(capfd.readouterr().err, '')
    monkeypatch.setattr(io, 'buglvl', 1)
    io.debug1('shown\n')
    io.debug2('hidden\n')
    WVPASSEQ(capfd.readouterr().err, 'shown\n')

def test_log_clears_progress_line(capfd, monkeypatch):
    monkeypatch.setattr(io, 'istty2', True)
    monkeypatch.setattr(io, '_last_progress', '')
    io.progress('working\r')
    log('done\n')
    log('again\n')
    WVPASSEQ(capfd.readouterr().err, 'working\r\x1b[0Kdone\nagain\n')
