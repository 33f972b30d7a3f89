"""Helper functions and classes for gitdav."""

from contextlib import ExitStack
from subprocess import DEVNULL, PIPE, CalledProcessError, Popen
import sys, os, socket

from gitdav.io import debug1, log, path_msg


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class finalized:
    """Context manager calling how(what) on exit, and returning what
    (None when only how is given) on entry."""
    def __init__(self, what_or_how, how=None):
        if how is None:
            self.enter_result = None
            self.finalize = what_or_how
        else:
            self.enter_result = what_or_how
            self.finalize = how
    def __enter__(self):
        return self.enter_result
    def __exit__(self, exc_type, exc_value, traceback):
        self.finalize(self.enter_result)


if not sys.platform.startswith('darwin'):
    fsync = os.fsync
else:
    # macos doesn't guarantee to sync all the way down (see fsync(2))
    import fcntl
    def fsync(fd):
        return fcntl.fcntl(fd, fcntl.F_FULLFSYNC)


def stat_if_exists(path):
    """Return os.stat(path), or None if nothing is there (including
    when a parent is a file)."""
    try:
        return os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None


def mkdirp(d, mode=None):
    """Create d and any missing parents; fine if d already exists."""
    try:
        if mode:
            os.makedirs(d, mode)
        else:
            os.makedirs(d)
    except FileExistsError:
        if not os.path.isdir(d):
            raise


def shstr(cmd):
    """Return cmd (a sequence of bytes) as a shell-quoted str for
    messages."""
    return ' '.join(path_msg(x) for x in cmd)


def exo(cmd, input=None, stderr=None, env=None, check=True):
    """Run cmd and return (stdout, stderr, process).  stdin is
    /dev/null unless there's input.  Raise CalledProcessError on
    failure when check is true."""
    p = Popen(cmd,
              stdin=DEVNULL if input is None else PIPE,
              stdout=PIPE, stderr=stderr, env=env, close_fds=True)
    out, err = p.communicate(input)
    if check and p.returncode != 0:
        raise CalledProcessError(p.returncode, shstr(cmd), out, err)
    return out, err, p


def read_chunks(f, size=65536):
    """Yield the rest of f in blocks of at most size bytes."""
    while True:
        b = f.read(size)
        if not b:
            return
        yield b


class atomically_replaced_file:
    """Context manager yielding a file that replaces path when the
    block finishes without an exception.

    The data goes to a hidden temporary file in the same directory,
    which is renamed over path on success and removed otherwise, so
    readers see either the old content or the new, never a mix.
    Calling cancel() inside the block discards the new content.  When
    sync is true the data and the rename are fsynced before returning.

    The path must be bytes.  E.g.::

      with atomically_replaced_file(b'info/refs', 'wb') as f:
          f.write(b'...')

    """
    def __init__(self, path, mode='w', sync=True):
        assert 'w' in mode
        self.path = path
        self.mode = mode
        self.canceled = False
        self.tmp_path = None
        self._sync = sync
        self._file = None
        self._parent, self._base = os.path.split(path)
        assert self._base, f'{path!r} is a directory'

    def _create_tmp(self):
        flags = os.O_WRONLY | os.O_CREAT | os.O_EXCL
        while True:
            name = b'.%s-%s.tmp' % (self._base, os.urandom(6).hex().encode())
            tmp_path = os.path.join(self._parent, name)
            try:
                # 0666 so the result honors the umask like any new file
                return tmp_path, os.open(tmp_path, flags, 0o666)
            except FileExistsError:
                continue

    def __enter__(self):
        self.tmp_path, fd = self._create_tmp()
        try:
            self._file = os.fdopen(fd, self.mode)
        except BaseException:
            os.close(fd)
            os.unlink(self.tmp_path)
            raise
        return self._file

    def __exit__(self, exc_type, exc_value, traceback):
        with ExitStack() as cleanup:
            cleanup.callback(self._discard_tmp)
            with self._file:
                if self.canceled or exc_type:
                    return
                if self._sync:
                    self._file.flush()
                    fsync(self._file.fileno())
            os.rename(self.tmp_path, self.path)
            self.tmp_path = None
            if self._sync:
                fd = os.open(self._parent or b'.', os.O_RDONLY)
                with finalized(fd, os.close):
                    fsync(fd)

    def _discard_tmp(self):
        if self.tmp_path:
            try:
                os.unlink(self.tmp_path)
            except FileNotFoundError:
                pass
            self.tmp_path = None

    def cancel(self):
        self.canceled = True


def handle_ctrl_c():
    """Replace the default exception handler for KeyboardInterrupt (Ctrl-C).

    The new exception handler will make sure that gitdav will exit
    without an ugly stacktrace when Ctrl-C is hit.
    """
    oldhook = sys.excepthook
    def newhook(exctype, value, traceback):
        if exctype == KeyboardInterrupt:
            log('\nInterrupted.\n')
        else:
            oldhook(exctype, value, traceback)
    sys.excepthook = newhook


def local_ipv4():
    """Return the IPv4 address this host would use for outbound
    traffic, or 127.0.0.1 if there isn't one.

    No packets are sent; connecting a UDP socket only selects a route.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(('10.254.254.254', 1))
        return s.getsockname()[0]
    except OSError as ex:
        debug1('no routable IPv4 address (%s), using loopback\n' % ex)
        return '127.0.0.1'
    finally:
        s.close()


def format_duration(secs):
    """Return secs as HH:MM:SS."""
    secs = max(0, int(secs))
    return '%02d:%02d:%02d' % (secs // 3600, (secs // 60) % 60, secs % 60)


def is_under(path, root):
    """Return true if path is root or lies below it (both bytes)."""
    return path == root or path.startswith(root.rstrip(b'/') + b'/')
