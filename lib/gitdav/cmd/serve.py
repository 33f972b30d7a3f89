
from os import fsencode
import asyncio, os, signal

from tornado.netutil import bind_sockets

from gitdav import dav, git, options
from gitdav.config import (DEFAULT_ADDR,
                           DEFAULT_PORT,
                           InvalidArgument,
                           ServeConfig)
from gitdav.helpers import (EXIT_FAILURE,
                            EXIT_INTERRUPTED,
                            EXIT_SUCCESS,
                            local_ipv4,
                            log)
from gitdav.io import path_msg
from gitdav.session import Session


optspec = """
gitdav serve [-p PORT] [-a ADDR] [--no-timeout] [PATH]
--
p,port=     port to listen on [%d]
a,addr=     IPv4 address to listen on [%s]
no-timeout  serve until interrupted instead of for a limited session
""" % (DEFAULT_PORT, DEFAULT_ADDR)

def main(argv):
    o = options.Options(optspec)
    opt, flags, extra = o.parse_bytes(argv[1:])
    if len(extra) > 1:
        o.fatal('at most one PATH is allowed')
    root = os.path.abspath(fsencode(extra[0]) if extra else b'.')

    overrides = {} if opt.timeout else {'session_timeout': None}
    try:
        config = ServeConfig.from_environment(root, addr=opt.addr,
                                              port=opt.port, **overrides)
        config.validate()
    except InvalidArgument as ex:
        o.fatal(str(ex))

    if git.is_repo(root):
        names = [b'']
    else:
        try:
            names = git.list_repos(root)
        except git.NoRepositoriesFound as ex:
            log(f'gitdav: error: {ex}\n')
            return EXIT_FAILURE

    try:
        sockets = bind_sockets(config.port, config.addr)
    except OSError as ex:
        log(f'gitdav: error: cannot listen on {config.addr}:{config.port}: {ex}\n')
        return EXIT_FAILURE
    port = sockets[0].getsockname()[1]
    host = local_ipv4() if config.addr == '0.0.0.0' else config.addr

    print('Serving repositories:')
    for name in names:
        print('    http://%s:%d/%s' % (host, port, path_msg(name)))
    print(flush=True)

    session = None
    if config.session_timeout:
        session = Session(config.session_timeout)
    stopped_by = asyncio.run(dav.serve(config, sockets=sockets,
                                       session=session))
    if stopped_by == signal.SIGINT:
        return EXIT_INTERRUPTED
    return EXIT_SUCCESS
