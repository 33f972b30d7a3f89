"""Git interaction library.
gitdav serves plain bare git repositories.  This library creates them,
repoints their HEAD, finds them, and keeps the "dumb" HTTP discovery
files (info/refs and info/packs) up to date, all through the git
command line.
"""

from os import environb as environ
from stat import S_ISDIR
from subprocess import DEVNULL, PIPE, run
import os

from gitdav.helpers import (atomically_replaced_file,
                            exo,
                            mkdirp,
                            shstr,
                            stat_if_exists)
from gitdav.io import debug1, debug2, path_msg


DEFAULT_BRANCH = b'develop'

POST_UPDATE_HOOK = b'#!/bin/sh\nexec git update-server-info\n'

# Relaxed because a static file server can't run the hooks that would
# otherwise reject unsafe pushes.
SERVER_CONFIG = ((b'http.receivepack', b'true'),
                 (b'http.uploadpack', b'true'),
                 (b'receive.denyNonFastforwards', b'false'),
                 (b'receive.denyDeletes', b'false'),
                 (b'receive.denyCurrentBranch', b'false'))


class GitError(Exception):
    pass

class RepositoryCreationFailed(GitError):
    pass

class RepositoryOpenFailed(GitError):
    pass

class HeadUpdateFailed(GitError):
    pass

class ServerInfoWriteFailed(GitError):
    pass

class NoRepositoriesFound(GitError):
    pass


def _gitenv(repo_dir):
    return {**environ, **{b'GIT_DIR': os.path.abspath(repo_dir)}}

def _git_exo(cmd, repo_dir, exc=GitError):
    """Run cmd against repo_dir and return its output, raising exc
    (with git's complaint, if any) when it fails.

    """
    debug2('running %s\n' % shstr(cmd))
    out, err, proc = exo(cmd, env=_gitenv(repo_dir), stderr=PIPE, check=False)
    if proc.returncode != 0:
        why = err.strip().decode(errors='backslashreplace')
        raise exc('%s exited with %d%s'
                  % (shstr(cmd), proc.returncode,
                     ' (%s)' % why if why else ''))
    return out

def git_config_set(repo_dir, option, value, exc=GitError):
    _git_exo([b'git', b'config', option, value], repo_dir, exc=exc)


def is_repo(path):
    """Return true if path opens as a git directory (i.e. git would
    accept it as GIT_DIR)."""
    p = run([b'git', b'rev-parse', b'--git-dir'], env=_gitenv(path),
            stdout=DEVNULL, stderr=DEVNULL, close_fds=True)
    return p.returncode == 0


def init_repo(path, head_branch=None):
    """Create a bare repository at path, configured for serving over
    plain HTTP, with HEAD pointing at head_branch (DEFAULT_BRANCH by
    default).  Raise RepositoryCreationFailed on any failure, leaving
    whatever was created so far in place.

    """
    path = os.path.abspath(path)
    branch = head_branch or DEFAULT_BRANCH
    parent = os.path.dirname(path)
    if not os.path.isdir(parent):
        raise RepositoryCreationFailed('parent directory %s does not exist'
                                       % path_msg(parent))
    st = stat_if_exists(path)
    if st:
        if not S_ISDIR(st.st_mode):
            raise RepositoryCreationFailed('%s exists but is not a directory'
                                           % path_msg(path))
        if os.listdir(path) and not is_repo(path):
            raise RepositoryCreationFailed('%s is not empty and is not a'
                                           ' repository' % path_msg(path))
    debug1('initializing %s\n' % path_msg(path))
    _git_exo([b'git', b'-c', b'init.defaultBranch=' + branch,
              b'init', b'--bare', b'--shared=all', b'--quiet'],
             path, exc=RepositoryCreationFailed)
    # init.defaultBranch is ignored by older gits and on re-init
    _git_exo([b'git', b'symbolic-ref', b'HEAD', b'refs/heads/' + branch],
             path, exc=RepositoryCreationFailed)
    for option, value in SERVER_CONFIG:
        git_config_set(path, option, value, exc=RepositoryCreationFailed)
    try:
        hooks = os.path.join(path, b'hooks')
        mkdirp(hooks)
        hook = os.path.join(hooks, b'post-update')
        with open(hook, 'wb') as f:
            f.write(POST_UPDATE_HOOK)
        os.chmod(hook, 0o775)
    except OSError as ex:
        raise RepositoryCreationFailed('cannot write post-update hook: %s'
                                       % ex)


def set_head(repo_dir, branch):
    """Point the HEAD of repo_dir at refs/heads/branch.  The branch
    doesn't have to exist yet."""
    if not is_repo(repo_dir):
        raise RepositoryOpenFailed('%s is not a git repository'
                                   % path_msg(repo_dir))
    ref = b'refs/heads/' + branch
    _git_exo([b'git', b'check-ref-format', ref], repo_dir,
             exc=HeadUpdateFailed)
    _git_exo([b'git', b'symbolic-ref', b'HEAD', ref], repo_dir,
             exc=HeadUpdateFailed)


def list_refs(repo_dir):
    """Yield (refname, oidx) tuples for every ref in the repository,
    in the order git lists them.  Symbolic refs are reported with the
    id of their target.  Refs that don't resolve to an object in the
    repository (e.g. left behind by an interrupted push) are skipped.

    """
    out = _git_exo([b'git', b'for-each-ref',
                    b'--format=%(objectname) %(refname)'], repo_dir)
    refs = [line.split(b' ', 1) for line in out.splitlines()]
    if not refs:
        return
    # for-each-ref may still list refs whose object is missing
    check = b''.join(oidx + b'\n' for oidx, name in refs)
    out, err, p = exo([b'git', b'cat-file', b'--batch-check'], input=check,
                      env=_gitenv(repo_dir), stderr=PIPE, check=False)
    if p.returncode != 0:
        raise GitError('git cat-file --batch-check exited with %d'
                       % p.returncode)
    for (oidx, name), status in zip(refs, out.splitlines()):
        if status.endswith(b' missing'):
            debug1('%s: skipping %s, %s is missing\n'
                   % (path_msg(repo_dir), path_msg(name), oidx.decode()))
            continue
        yield name, oidx


def list_packs(repo_dir):
    """Return the names of the pack files in the object store, in
    directory order."""
    try:
        names = os.listdir(os.path.join(repo_dir, b'objects', b'pack'))
    except FileNotFoundError:
        return []
    return [n for n in names if os.path.splitext(n)[1] == b'.pack']


def _put_file(path, data):
    mkdirp(os.path.dirname(path))
    with atomically_replaced_file(path, 'wb') as f:
        f.write(data)


def update_server_info(repo_dir):
    """Rewrite info/refs and info/packs (and objects/info/packs, where
    stock dumb-HTTP clients look for it) from the current state of
    repo_dir.

    """
    try:
        refs = list(list_refs(repo_dir))
        packs = list_packs(repo_dir)
    except (GitError, OSError) as ex:
        raise ServerInfoWriteFailed('cannot read %s: %s'
                                    % (path_msg(repo_dir), ex))
    refs_data = b''.join(b'%s\t%s\n' % (oidx, name) for name, oidx in refs)
    packs_data = b''.join(b'P %s\n' % name for name in packs)
    debug1('%s: %d refs, %d packs\n'
           % (path_msg(repo_dir), len(refs), len(packs)))
    try:
        _put_file(os.path.join(repo_dir, b'info', b'refs'), refs_data)
        _put_file(os.path.join(repo_dir, b'info', b'packs'), packs_data)
        _put_file(os.path.join(repo_dir, b'objects', b'info', b'packs'),
                  packs_data)
    except OSError as ex:
        raise ServerInfoWriteFailed('cannot write server info for %s: %s'
                                    % (path_msg(repo_dir), ex))


def list_repos(root):
    """Return the names of the repositories directly below root, in
    directory order.  A repository's own ".git" directory never counts.
    Raise NoRepositoriesFound if there are none.

    """
    try:
        names = os.listdir(root)
    except OSError as ex:
        raise NoRepositoriesFound('cannot list %s: %s'
                                  % (path_msg(root), ex.strerror))
    repos = []
    for name in names:
        path = os.path.join(root, name)
        if not os.path.isdir(path):
            continue
        if is_repo(path) and name != b'.git':
            repos.append(name)
    if not repos:
        raise NoRepositoriesFound('no git repositories in %s'
                                  % path_msg(root))
    return repos
