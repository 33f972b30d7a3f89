
from os import fsencode

from gitdav import git, options
from gitdav.helpers import EXIT_FAILURE, EXIT_SUCCESS, log
from gitdav.io import path_msg


optspec = """
gitdav set-head REPOSITORY BRANCH
--
"""

def main(argv):
    o = options.Options(optspec)
    opt, flags, extra = o.parse_bytes(argv[1:])
    if len(extra) != 2:
        o.fatal('exactly two arguments, REPOSITORY and BRANCH, are required')
    repo, branch = [fsencode(x) for x in extra]

    try:
        git.set_head(repo, branch)
    except git.GitError as ex:
        log(f'gitdav: error: could not set HEAD: {ex}\n')
        return EXIT_FAILURE
    print('New HEAD set to %s' % path_msg(branch), flush=True)
    try:
        git.update_server_info(repo)
    except git.ServerInfoWriteFailed as ex:
        log(f'gitdav: error: {ex}\n')
        return EXIT_FAILURE
    return EXIT_SUCCESS
