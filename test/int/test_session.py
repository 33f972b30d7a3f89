
from os.path import realpath
from shutil import rmtree
import os, tempfile, time

import pytest

from tornado.httpclient import AsyncHTTPClient
from tornado.locks import Event
from tornado.testing import AsyncTestCase, bind_unused_port, gen_test

from wvpytest import *

from gitdav import dav
from gitdav.config import InvalidArgument, ServeConfig
from gitdav.session import Session


def test_indicator():
    s = Session(300, show=False)
    WVPASSEQ(s.indicator(), 'Ending session in 00:05:00 [####################]')
    s.remaining = 150
    WVPASSEQ(s.indicator(), 'Ending session in 00:02:30 [##########----------]')
    s.remaining = 0
    WVPASSEQ(s.indicator(width=4), 'Ending session in 00:00:00 [----]')


def test_invalid_duration():
    for duration in (0, -5, 1.5, '300', True):
        with pytest.raises(InvalidArgument):
            Session(duration)


class TestSession(AsyncTestCase):

    def setUp(self):
        super().setUp()
        self.root = realpath(tempfile.mkdtemp(prefix=b'gitdav-session-'))
        with open(self.root + b'/file', 'wb') as f:
            f.write(b'data')

    def tearDown(self):
        rmtree(self.root)
        super().tearDown()

    def config(self):
        return ServeConfig(root=self.root, addr='127.0.0.1',
                           shutdown_grace=0.2, hide_macos_metadata=False)

    @gen_test
    async def test_countdown(self):
        s = Session(3, tick=0.01, show=False)
        WVPASS(not s.expired.is_set())
        await s.run()
        WVPASS(s.expired.is_set())
        WVPASSEQ(s.remaining, 0)

    @gen_test(timeout=10)
    async def test_serve_until_expiry(self):
        sock, port = bind_unused_port()
        start = time.monotonic()
        stopped_by = await dav.serve(self.config(), sockets=[sock],
                                     session=Session(1, show=False),
                                     handle_signals=False)
        WVPASSLT(time.monotonic() - start, 2)
        WVPASSEQ(stopped_by, None)

    @gen_test(timeout=10)
    async def test_expiry_with_request_in_flight(self):
        sock, port = bind_unused_port()
        release = Event()
        started = Event()

        async def slow_body(write):
            await write(b'first chunk')
            started.set()
            await release.wait()

        client = AsyncHTTPClient()
        upload = client.fetch('http://127.0.0.1:%d/upload' % port,
                              method='PUT', body_producer=slow_body,
                              headers={'Content-Length': '1000000'},
                              request_timeout=30)
        start = time.monotonic()
        await dav.serve(self.config(), sockets=[sock],
                        session=Session(1, show=False),
                        handle_signals=False)
        WVPASSLT(time.monotonic() - start, 2)
        WVPASS(started.is_set())
        release.set()
        with pytest.raises(Exception):
            await upload
        # An abandoned upload never replaces anything
        WVPASSEQ(sorted(os.listdir(self.root)), [b'file'])
