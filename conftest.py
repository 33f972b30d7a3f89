
from os import environb as environ, fsencode
from os.path import dirname, realpath, relpath
from shutil import rmtree
from sys import stderr
from tempfile import mkdtemp
import os
import pytest
import re
import subprocess
import sys
import tempfile

sys.path[:0] = ['lib', 'test/lib']

from gitdav.helpers import finalized


_gitdav_src_top = realpath(dirname(fsencode(__file__)))

os.chdir(realpath(os.getcwd()))

# Make the test results available to fixtures
@pytest.hookimpl(tryfirst=True, hookwrapper=True)
def pytest_runtest_makereport(item, call):
    other_hooks = yield
    report = other_hooks.get_result()
    gitdav = item.__dict__.setdefault('gitdav', {})
    gitdav[report.when + '-report'] = report  # setup, call, teardown
    item.gitdav = gitdav

# Assumes (of course) this file is at the top-level of the source tree
_gitdav_test_dir = realpath(dirname(fsencode(__file__))) + b'/test'
_gitdav_tmp = _gitdav_test_dir + b'/tmp'
os.makedirs(_gitdav_tmp, exist_ok=True)

@pytest.fixture(autouse=True)
def common_test_environment(request):
    orig_env = environ.copy()
    def restore_env(_):
        for k, orig_v in orig_env.items():
            if environ.get(k) is not orig_v:
                environ[k] = orig_v
        for k in list(environ.keys()):
            if k not in orig_env:
                del environ[k]
    rm_home = True
    def maybe_rm_home(home):
        if not rm_home:
            print('\nPreserving test HOME:', home, file=stderr)
            return
        rmtree(home)
    with finalized(mkdtemp(dir=_gitdav_tmp, prefix=b'home-'), maybe_rm_home) as home, \
         finalized(lambda _: os.chdir(_gitdav_src_top)), \
         finalized(restore_env):
        environ[b'HOME'] = home
        # Commits made by tests shouldn't depend on the user's setup
        environ[b'GIT_CONFIG_NOSYSTEM'] = b'1'
        environ[b'GIT_AUTHOR_NAME'] = b'gitdav test'
        environ[b'GIT_AUTHOR_EMAIL'] = b'gitdav@example.com'
        environ[b'GIT_COMMITTER_NAME'] = b'gitdav test'
        environ[b'GIT_COMMITTER_EMAIL'] = b'gitdav@example.com'
        yield None
        if request.node.gitdav['call-report'].failed:
            rm_home = False

_safe_path_rx = re.compile(br'[^a-zA-Z0-9_-]')

@pytest.fixture()
def tmpdir(request):
    rp = realpath(fsencode(request.fspath))
    rp = relpath(rp, _gitdav_test_dir)
    if request.function:
        rp += b'-' + fsencode(request.function.__name__)
    safe = _safe_path_rx.sub(b'-', rp)
    tmpdir = tempfile.mkdtemp(dir=_gitdav_tmp, prefix=safe)
    yield tmpdir
    if request.node.gitdav['call-report'].failed:
        print('\nPreserving:', b'test/' + relpath(tmpdir, _gitdav_test_dir),
              file=sys.stderr)
    else:
        subprocess.call(['chmod', '-R', 'u+rwX', tmpdir])
        subprocess.call(['rm', '-rf', tmpdir])
