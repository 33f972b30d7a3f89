"""A countdown that limits how long a serve session stays up."""

from tornado import gen
from tornado.locks import Event

from gitdav.config import InvalidArgument
from gitdav.helpers import format_duration
from gitdav.io import debug1, log, progress


class Session:
    """Count down from duration seconds, once per tick, then set
    expired.  Nothing is torn down here; whoever is serving waits on
    expired and shuts itself down.

    """
    def __init__(self, duration, *, tick=1.0, show=True):
        if isinstance(duration, bool) or not isinstance(duration, int) \
           or duration <= 0:
            raise InvalidArgument('session duration must be a positive'
                                  f' number of seconds, not {duration!r}')
        self.duration = duration
        self.remaining = duration
        self.tick = tick
        self.show = show
        self.expired = Event()

    def indicator(self, width=20):
        done = width * self.remaining // self.duration
        return 'Ending session in %s [%s%s]' \
            % (format_duration(self.remaining), '#' * done, '-' * (width - done))

    def _redraw(self):
        if self.show:
            progress(self.indicator() + '\r')

    async def run(self):
        debug1('session: %d seconds\n' % self.duration)
        self._redraw()
        while self.remaining > 0:
            await gen.sleep(self.tick)
            self.remaining -= 1
            self._redraw()
        if self.show:
            progress('')
        log('Server session expired\n')
        self.expired.set()
