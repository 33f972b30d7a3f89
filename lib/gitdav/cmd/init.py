
from os import fsencode

from gitdav import git, options
from gitdav.helpers import EXIT_FAILURE, EXIT_SUCCESS, log
from gitdav.io import path_msg


optspec = """
gitdav init REPO_NAME
--
"""

def main(argv):
    o = options.Options(optspec)
    opt, flags, extra = o.parse_bytes(argv[1:])
    if len(extra) != 1:
        o.fatal('exactly one REPO_NAME is required')
    path = fsencode(extra[0])

    print('Initializing repository %s' % path_msg(path), flush=True)
    try:
        git.init_repo(path, git.DEFAULT_BRANCH)
        git.update_server_info(path)
    except git.GitError as ex:
        log(f'gitdav: error: could not init repository: {ex}\n')
        return EXIT_FAILURE
    print('Repository HEAD set to "%s"' % path_msg(git.DEFAULT_BRANCH))
    print('To change HEAD, use set-head <REPOSITORY> <BRANCH>')
    return EXIT_SUCCESS
