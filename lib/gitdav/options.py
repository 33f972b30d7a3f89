"""Command-line option parsing driven by an optspec string.

An optspec has a synopsis part and an options part, separated by a line
holding just "--":

    gitdav serve [-p PORT] [PATH]
    --
    p,port=     port to listen on [5005]
    no-timeout  serve until interrupted

Each option line starts with its comma-separated flags.  The last long
flag names the attribute the value is stored under.  A trailing "="
means the option takes an argument, which becomes an int when it looks
like one.  A "[default]" at the end of the description is the value
used when the option isn't given.  A flag starting with "no-" declares a
switch that is on by default, so "no-timeout" yields opt.timeout, true
unless --no-timeout is given.  Lines that start with a space are group
headings in the usage text.

-h, -? and --help are always accepted and print the usage.
"""

import getopt, os, re, sys, textwrap


def _intify(v):
    try:
        if str(int(v)) == v:
            return int(v)
    except ValueError:
        pass
    return v


def _tty_width():
    forced = os.environ.get('GITDAV_TTY_WIDTH')
    if forced:
        return int(forced)
    try:
        return os.get_terminal_size(sys.stderr.fileno()).columns or 70
    except OSError:
        return 70


class _OptSpecLine:
    """One option line of an optspec."""

    def __init__(self, line):
        flags, _, self.help = line.partition(' ')
        self.help = self.help.strip()
        self.takes_arg = flags.endswith('=')
        self.flags = flags.rstrip('=').split(',')
        name = self.flags[-1]
        self.negated = name.startswith('no-')
        if self.negated:
            name = name[3:]
        self.key = name.replace('-', '_')
        m = re.search(r'\[([^\]]*)\]$', self.help)
        if self.negated:
            self.default = True
        elif m:
            self.default = _intify(m.group(1))
        else:
            self.default = None

    def usage_line(self, width):
        flags = ', '.join(('-' if len(f) == 1 else '--') + f
                          for f in self.flags)
        if self.takes_arg:
            flags += ' ...'
        return '\n'.join(textwrap.wrap(self.help, width=width,
                                       initial_indent='    %-20s  ' % flags,
                                       subsequent_indent=' ' * 28))


class OptDict:
    """The parsed options, readable as attributes."""

    def __init__(self, values):
        self._values = values

    def __getattr__(self, k):
        try:
            return self._values[k]
        except KeyError:
            raise AttributeError(k) from None

    def __getitem__(self, k):
        return self._values[k]


def _default_onabort(msg):
    sys.exit(1)


class Options:
    """Parse command lines as described by an optspec (see the module
    docstring).

    onabort is called with the error message (or '' for --help) after
    the usage has been printed; by default it exits with status 1.
    """
    def __init__(self, optspec, onabort=_default_onabort):
        self.optspec = optspec
        self._onabort = onabort
        self._by_flag = {}
        self._lines = []
        self._synopsis = []
        self._parse_optspec()

    def _parse_optspec(self):
        lines = self.optspec.strip().split('\n')
        while lines:
            l = lines.pop(0)
            if l == '--':
                break
            self._synopsis.append(l)
        for l in lines:
            if l and not l.startswith(' '):
                l = _OptSpecLine(l)
                for f in l.flags:
                    self._by_flag[f] = l
            self._lines.append(l)

    def _getopt_args(self):
        shortopts = 'h?'
        longopts = ['help']
        for f, l in self._by_flag.items():
            if len(f) == 1:
                shortopts += f + (':' if l.takes_arg else '')
            else:
                longopts.append(f + ('=' if l.takes_arg else ''))
        return shortopts, longopts

    def usagestr(self):
        out = ['%s: %s\n' % ('usage' if i == 0 else '   or', syn)
               for i, syn in enumerate(self._synopsis)]
        out.append('\n')
        width = _tty_width()
        for l in self._lines:
            if isinstance(l, _OptSpecLine):
                out.append(l.usage_line(width) + '\n')
            else:
                out.append(l.strip() + '\n')
        return ''.join(out).rstrip() + '\n'

    def usage(self, msg=''):
        """Print the usage (and msg) to stderr, then abort."""
        sys.stderr.write(self.usagestr())
        if msg:
            sys.stderr.write(msg)
        sys.stderr.flush()
        return self._onabort(msg)

    def fatal(self, msg):
        """Print msg as an error after the usage, then abort."""
        return self.usage('\nerror: %s\n' % msg)

    def parse(self, args):
        """Parse args (strs) and return (opt, flags, extra): the OptDict
        of values, the (flag, value) pairs as given, and the positional
        arguments.

        """
        shortopts, longopts = self._getopt_args()
        try:
            flags, extra = getopt.gnu_getopt(args, shortopts, longopts)
        except getopt.GetoptError as e:
            self.fatal(e)
            return None
        values = {l.key: l.default for l in self._by_flag.values()}
        for k, v in flags:
            k = k.lstrip('-')
            if k in ('h', '?', 'help'):
                self.usage()
                continue
            l = self._by_flag[k]
            if l.takes_arg:
                values[l.key] = _intify(v)
            elif l.negated:
                values[l.key] = False
            else:
                values[l.key] = (values[l.key] or 0) + 1
        return OptDict(values), flags, extra

    def parse_bytes(self, args):
        """As parse(), for bytes args.  Undecodable bytes survive as
        surrogate escapes, so fsencode() restores them."""
        return self.parse([x.decode(errors='surrogateescape') for x in args])
