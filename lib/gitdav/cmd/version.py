
import sys

from gitdav import options, version
from gitdav.io import byte_stream


optspec = """
gitdav version
--
"""

def main(argv):
    o = options.Options(optspec)
    opt, flags, extra = o.parse_bytes(argv[1:])
    if extra:
        o.fatal('no arguments expected')

    sys.stdout.flush()
    out = byte_stream(sys.stdout)
    out.write(version.version + b'\n')
    out.flush()
