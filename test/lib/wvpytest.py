import os
import pytest

# Nothing in the tests should fall back to an ambient repository; the
# git layer always sets GIT_DIR itself.

os.environb[b'GIT_DIR'] = b'/dev/null'

def WVPASS(cond = True, fail_value=None):
    if fail_value:
        assert cond, fail_value
    else:
        assert cond

def WVFAIL(cond = True):
    assert not cond

def WVPASSEQ(a, b, fail_value=None):
    if fail_value:
        assert a == b, fail_value
    else:
        assert a == b

def WVPASSNE(a, b):
    assert a != b

def WVPASSLT(a, b):
    assert a < b

def WVEXCEPT(etype, func, *args, **kwargs):
    with pytest.raises(etype):
        func(*args, **kwargs)
