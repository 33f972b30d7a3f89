
from importlib import import_module
from pkgutil import iter_modules
from traceback import print_exception
import os, sys

from gitdav import io
from gitdav.helpers import (EXIT_FAILURE,
                            EXIT_INTERRUPTED,
                            handle_ctrl_c,
                            log)
from gitdav.io import path_msg, progress
import gitdav.cmd


class UsageError(Exception):
    pass


def usage(msg=""):
    log('Usage: gitdav [-?|--help] [-D|--debug] [-V|--version] '
        '<command> [options...]\n\n')
    common = {
        'serve': 'Serve the repositories below a directory over WebDAV',
        'init': 'Create a bare repository ready to be served',
        'set-head': 'Point the HEAD of a repository at another branch',
        'version': 'Print the version',
    }
    log('Commands:\n')
    for name, synopsis in sorted(common.items()):
        log('    %-10s %s\n' % (name, synopsis))
    for _, name, _ in iter_modules(path=gitdav.cmd.__path__):
        name = name.replace('_', '-')
        if name not in common:
            log('    %s\n' % name)
    log("\nSee 'gitdav COMMAND --help' for more information on a"
        " specific command.\n")
    if msg:
        log('\n%s\n' % msg)


def parse_global_args(args):
    """Return the subcommand argv left after consuming the global
    options in args (all bytes), or raise UsageError.

    """
    while args:
        arg = args[0]
        if arg in (b'-?', b'--help'):
            raise UsageError('')
        elif arg in (b'-V', b'--version'):
            return [b'version']
        elif arg in (b'-D', b'--debug'):
            io.buglvl += 1
            os.environb[b'GITDAV_DEBUG'] = b'%d' % io.buglvl
            args = args[1:]
        elif arg.startswith(b'-'):
            raise UsageError('error: unexpected option "%s"'
                             % arg.decode('ascii', 'backslashreplace'))
        else:
            break
    if not args:
        raise UsageError('')
    return args


def run(argv):
    """Run the command named in argv (bytes, program name first) and
    return its exit status."""
    try:
        subcmd = parse_global_args(argv[1:])
    except UsageError as ex:
        usage(str(ex))
        return EXIT_FAILURE

    subcmd_name = subcmd[0]
    try:
        name = subcmd_name.decode('ascii').replace('-', '_')
    except UnicodeDecodeError:
        name = None
    cmd_module = None
    if name and not name.startswith('_'):
        cmd_module_name = 'gitdav.cmd.' + name
        try:
            cmd_module = import_module(cmd_module_name)
        except ModuleNotFoundError as ex:
            if ex.name != cmd_module_name:
                raise ex
    if not cmd_module:
        usage('error: unknown command "%s"' % path_msg(subcmd_name))
        return EXIT_FAILURE

    try:
        return cmd_module.main(subcmd) or 0
    finally:
        # clear before exit so the shell prompt doesn't land on it
        progress('')


def main():
    handle_ctrl_c()
    try:
        rc = run([os.fsencode(x) for x in sys.argv])
    except KeyboardInterrupt:
        log('\nInterrupted.\n')
        rc = EXIT_INTERRUPTED
    except SystemExit as ex:
        raise ex
    except BaseException as ex:
        print_exception(ex)
        rc = EXIT_FAILURE
    sys.exit(rc)


if __name__ == "__main__":
    main()
