
from errno import EAGAIN
from os import fsdecode
import os, select, sys


# Write (blockingly) to fds that may or may not be in blocking mode.
# tornado and git subprocesses share our stderr, and either may leave
# it nonblocking for a while.
def _hard_write(fd, buf):
    while buf:
        (r,w,x) = select.select([], [fd], [], None)
        if not w:
            raise IOError('select(fd) returned without being writable')
        try:
            sz = os.write(fd, buf)
        except OSError as e:
            if e.errno != EAGAIN:
                raise
            sz = 0
        assert(sz >= 0)
        buf = buf[sz:]


_clear_line_seq = b'\x1b[0K'
_last_progress = ''

def log(s):
    """Print a log message to stderr, first erasing any pending
    progress line."""
    global _last_progress
    fd = sys.stderr.fileno()
    if _last_progress.endswith('\r'):
        _hard_write(fd, _clear_line_seq)
        _last_progress = ''
    sys.stdout.flush()
    _hard_write(fd, s if isinstance(s, bytes) else s.encode())


buglvl = int(os.environ.get('GITDAV_DEBUG', 0))

def debug1(s):
    if buglvl >= 1:
        log(s)

def debug2(s):
    if buglvl >= 2:
        log(s)


istty2 = os.isatty(2) or (int(os.environ.get('GITDAV_FORCE_TTY', 0)) & 2)

def progress(s):
    """Calls log() if stderr is a TTY.  Does nothing otherwise.  A
    message ending in \\r is redrawn in place by the next call."""
    global _last_progress
    if istty2:
        log(s)
        _last_progress = s


def byte_stream(file):
    return file.buffer


_sh_special = '|&;<>()$`\\" \t*?[]^!#~=%{,}'

def enc_shs(val):
    """Minimally POSIX quote val (string) as a single line.  Use no
    quotes if possible, single quotes if val doesn't contain single
    quotes or control characters, otherwise dollar-single-quote with
    \\xNN escapes (including any surrogate escapes from fsdecode).

    """
    assert isinstance(val, str), val
    if val == '':
        return "''"
    need_sq = False
    for ch in val:
        c = ord(ch)
        if c < 32 or c == 39 or c == 127 or 0xdc80 <= c <= 0xdcff:
            return _enc_dsqs(val)
        if ch in _sh_special:
            need_sq = True
    if need_sq:
        return f"'{val}'"
    return val

def _enc_dsqs(val):
    result = ["$'"]
    for ch in val:
        c = ord(ch)
        if 0xdc80 <= c <= 0xdcff:
            result.append(r'\x%02x' % (128 + (c - 0xdc80)))
        elif ch == "'" or ch == '\\':
            result.append('\\' + ch)
        elif c < 32 or c == 127:
            result.append(r'\x%02x' % c)
        else:
            result.append(ch)
    result.append("'")
    return ''.join(result)


def path_msg(x):
    """Return a string representation of a path."""
    return enc_shs(fsdecode(x))
