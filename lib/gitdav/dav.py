"""WebDAV access to a directory tree.

This covers what git's dumb HTTP transport needs: GET and PROPFIND to
fetch, and PUT, MKCOL, MOVE, DELETE plus LOCK/UNLOCK for http-push.
Everything below the served root is readable and writable by anyone
who can reach the port.
"""

from collections import namedtuple
from datetime import timedelta
from os import fsdecode
from stat import S_ISDIR
from urllib.parse import quote, unquote_to_bytes, urlsplit
from xml.etree import ElementTree as ET
import asyncio, errno, mimetypes, os, re, signal, uuid

from tornado import gen
from tornado.httpserver import HTTPServer
from tornado.httputil import format_timestamp
from tornado.iostream import StreamClosedError
from tornado.locks import Condition, Event
from tornado.netutil import bind_sockets
from tornado.template import Template
from tornado.web import HTTPError
import tornado.web

from gitdav.config import InvalidArgument
from gitdav.helpers import (atomically_replaced_file,
                            is_under,
                            mkdirp,
                            read_chunks,
                            stat_if_exists)
from gitdav.io import debug1, log, path_msg


DAV_NS = 'DAV:'
ET.register_namespace('D', DAV_NS)

def D(name):
    return '{%s}%s' % (DAV_NS, name)

# Request bodies other than PUT's are small XML documents
MAX_XML_BODY = 1024 * 1024

Entry = namedtuple('Entry', ['name', 'is_dir', 'size', 'mtime'])


def translate_path(root, path):
    """Return the filesystem path below root for the (unquoted, bytes)
    request path, or None if it would lead outside root.  root must
    already be a realpath.

    """
    parts = []
    for seg in path.split(b'/'):
        if seg in (b'', b'.'):
            continue
        if seg == b'..':
            if not parts:
                return None
            parts.pop()
            continue
        if b'\0' in seg:
            return None
        parts.append(seg)
    result = os.path.join(root, *parts)
    # Symlinks must not lead out either
    if not is_under(os.path.realpath(result), root):
        return None
    return result


def is_macos_metadata(name):
    return name == b'.DS_Store' or name.startswith(b'._')


def stat_entry(path, name):
    st = os.stat(path)
    return Entry(name, S_ISDIR(st.st_mode), st.st_size, st.st_mtime)

def list_dir(path, *, hide_macos_metadata=False):
    """Return an Entry for everything in the directory path."""
    result = []
    with os.scandir(path) as it:
        for de in it:
            if hide_macos_metadata and is_macos_metadata(de.name):
                continue
            try:
                st = de.stat()
            except FileNotFoundError:  # vanished, or a dangling symlink
                continue
            result.append(Entry(de.name, S_ISDIR(st.st_mode),
                                st.st_size, st.st_mtime))
    return result


def etag(entry):
    return '"%x-%x"' % (int(entry.mtime * 1000000), entry.size)

def guess_type(name):
    return mimetypes.guess_type(fsdecode(name))[0] \
        or 'application/octet-stream'


_errno_status = {errno.ENOENT: 404,
                 errno.EACCES: 403,
                 errno.EPERM: 403,
                 errno.EROFS: 403,
                 errno.ENOTDIR: 409,
                 errno.EISDIR: 409,
                 errno.EEXIST: 409,
                 errno.ENOTEMPTY: 409,
                 errno.ENOSPC: 507,
                 errno.EDQUOT: 507}

def http_error(ex):
    """Return the HTTPError to answer with for OSError ex."""
    status = _errno_status.get(ex.errno, 500)
    if status == 500:
        log('error: %s\n' % ex)
    return HTTPError(status, log_message=str(ex))


class NoLocks:
    """LOCK and UNLOCK are refused, and no lock support is advertised."""
    enabled = False
    dav_class = '1'

    def describe(self, prop):
        pass


class FakeLocks:
    """Grant every lock and forget it immediately.

    Nothing is ever excluded.  This exists for clients (git http-push
    among them) that won't write without holding a lock token.
    """
    enabled = True
    dav_class = '1, 2'

    def describe(self, prop):
        supported = ET.SubElement(prop, D('supportedlock'))
        for scope in ('exclusive', 'shared'):
            entry = ET.SubElement(supported, D('lockentry'))
            ET.SubElement(ET.SubElement(entry, D('lockscope')), D(scope))
            ET.SubElement(ET.SubElement(entry, D('locktype')), D('write'))
        ET.SubElement(prop, D('lockdiscovery'))

    def lock(self, path, timeout, token=None):
        # A refresh just gets its own token back
        return token or 'opaquelocktoken:%s' % uuid.uuid4()

    def unlock(self, path, token):
        pass


_lock_systems = {'none': NoLocks, 'cooperative-stub': FakeLocks}

def make_lock_system(mode):
    cls = _lock_systems.get(mode)
    if not cls:
        raise InvalidArgument(f'locking mode {mode!r} is not available')
    return cls()


class RequestTracker:
    """Count the requests being handled so shutdown can wait for them."""
    def __init__(self):
        self.active = 0
        self._idle = Condition()

    def started(self):
        self.active += 1

    def finished(self):
        self.active -= 1
        if not self.active:
            self._idle.notify_all()

    async def wait_idle(self, timeout):
        """Return true if everything finished within timeout seconds."""
        if not self.active:
            return True
        return await self._idle.wait(timeout=timedelta(seconds=timeout))


_token_rx = re.compile(r'<(opaquelocktoken:[^>]+)>')
_timeout_rx = re.compile(r'Second-(\d+)', re.IGNORECASE)

def parse_timeout(value):
    """Return the first acceptable Timeout header value as it should be
    echoed back, defaulting to ten minutes."""
    if value:
        for part in value.split(','):
            part = part.strip()
            if part.lower() == 'infinite':
                return 'Infinite'
            m = _timeout_rx.fullmatch(part)
            if m:
                return 'Second-%d' % int(m.group(1))
    return 'Second-600'


_index_template = Template("""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Index of {{ title }}</title></head>
<body>
<h1>Index of {{ title }}</h1>
<table>
{% for row in rows %}<tr><td><a href="{{ row[1] }}">{{ row[0] }}</a></td><td>{{ row[2] }}</td><td>{{ row[3] }}</td></tr>
{% end %}</table>
</body>
</html>
""")


@tornado.web.stream_request_body
class DavHandler(tornado.web.RequestHandler):

    SUPPORTED_METHODS = ('GET', 'HEAD', 'PUT', 'DELETE', 'OPTIONS',
                         'PROPFIND', 'MKCOL', 'MOVE', 'LOCK', 'UNLOCK')

    def initialize(self, root=None, locks=None, tracker=None,
                   hide_macos_metadata=False):
        self.root = root
        self.locks = locks
        self.tracker = tracker
        self.hide_macos_metadata = hide_macos_metadata
        self.fs_path = None
        self._tracked = False
        self._body = []
        self._body_size = 0
        self._upload = None
        self._upload_f = None
        self._upload_error = None
        self._upload_existed = False
        self._discard = False

    def decode_argument(self, value, name=None):
        if name == 'path':
            return value
        return super().decode_argument(value, name)

    def _translate(self, path):
        fs_path = translate_path(self.root, path)
        if fs_path is None:
            debug1('refusing %s (outside of the served root)\n'
                   % path_msg(path))
            raise HTTPError(403)
        return fs_path

    def _hidden(self, fs_path):
        return self.hide_macos_metadata \
            and is_macos_metadata(os.path.basename(fs_path))

    def _href(self, fs_path, is_dir):
        rel = os.path.relpath(fs_path, self.root)
        href = b'/' if rel == b'.' else b'/' + rel
        if is_dir and not href.endswith(b'/'):
            href += b'/'
        return quote(href)

    def prepare(self):
        self.tracker.started()
        self._tracked = True
        self.fs_path = self._translate(self.path_kwargs['path'])
        method = self.request.method
        if self._hidden(self.fs_path):
            if method == 'PUT':
                self._discard = True
                return
            raise HTTPError(404)
        if method == 'PUT':
            self._begin_upload()

    def _begin_upload(self):
        st = stat_if_exists(self.fs_path)
        if st and S_ISDIR(st.st_mode):
            raise HTTPError(405)
        self._upload_existed = st is not None
        try:
            mkdirp(os.path.dirname(self.fs_path))
            upload = atomically_replaced_file(self.fs_path, 'wb', sync=False)
            self._upload_f = upload.__enter__()
            self._upload = upload
        except OSError as ex:
            raise http_error(ex)

    def _end_upload(self, commit):
        upload, self._upload = self._upload, None
        self._upload_f = None
        if upload:
            if not commit:
                upload.cancel()
            upload.__exit__(None, None, None)

    def data_received(self, chunk):
        if self._discard or self._upload_error:
            return
        if self._upload_f:
            try:
                self._upload_f.write(chunk)
            except OSError as ex:
                self._upload_error = ex
                self._end_upload(False)
            return
        self._body_size += len(chunk)
        if self._body_size <= MAX_XML_BODY:
            self._body.append(chunk)

    def _xml_body(self):
        """Return the parsed request body, or None if there isn't one."""
        if self._body_size > MAX_XML_BODY:
            raise HTTPError(413)
        body = b''.join(self._body)
        if not body.strip():
            return None
        try:
            return ET.fromstring(body)
        except ET.ParseError as ex:
            raise HTTPError(400, log_message='bad XML body: %s' % ex)

    def _send_xml(self, elt, status=200):
        self.set_status(status)
        self.set_header('Content-Type', 'application/xml; charset=utf-8')
        self.finish(ET.tostring(elt, encoding='utf-8', xml_declaration=True))

    def on_connection_close(self):
        self._end_upload(False)
        self._untrack()

    def on_finish(self):
        self._end_upload(False)
        self._untrack()

    def _untrack(self):
        if self._tracked:
            self._tracked = False
            self.tracker.finished()

    def options(self, path):
        self.set_header('DAV', self.locks.dav_class)
        self.set_header('MS-Author-Via', 'DAV')
        methods = [m for m in self.SUPPORTED_METHODS
                   if self.locks.enabled or m not in ('LOCK', 'UNLOCK')]
        self.set_header('Allow', ', '.join(methods))
        self.set_header('Content-Length', '0')

    async def get(self, path):
        st = stat_if_exists(self.fs_path)
        if not st:
            raise HTTPError(404)
        if S_ISDIR(st.st_mode):
            if not path.endswith(b'/'):
                return self.redirect(quote(path) + '/', permanent=True)
            return self._list_directory(path)
        entry = Entry(os.path.basename(self.fs_path), False,
                      st.st_size, st.st_mtime)
        self.set_header('Content-Type', guess_type(entry.name))
        self.set_header('Last-Modified', format_timestamp(entry.mtime))
        self.set_header('Etag', etag(entry))
        if self.check_etag_header():
            self.set_status(304)
            return None
        self.set_header('Content-Length', str(entry.size))
        if self.request.method == 'HEAD':
            return None
        try:
            f = open(self.fs_path, 'rb')
        except OSError as ex:
            raise http_error(ex)
        with f:
            try:
                for blob in read_chunks(f):
                    self.write(blob)
                    await self.flush()
            except StreamClosedError:
                debug1('client went away during %s\n'
                       % path_msg(self.fs_path))
        return None

    head = get

    def _list_directory(self, path):
        try:
            entries = list_dir(self.fs_path,
                               hide_macos_metadata=self.hide_macos_metadata)
        except OSError as ex:
            raise http_error(ex)
        rows = []
        if self.fs_path != self.root:
            rows.append(('../', '../', '', ''))
        for e in sorted(entries):
            name = e.name.decode(errors='replace')
            link = quote(e.name)
            if e.is_dir:
                rows.append((name + '/', link + '/', '', format_timestamp(e.mtime)))
            else:
                rows.append((name, link, e.size, format_timestamp(e.mtime)))
        self.set_header('Content-Type', 'text/html; charset=utf-8')
        self.finish(_index_template.generate(
            title=path.decode(errors='replace'), rows=rows))

    def _prop_response(self, fs_path, entry):
        resp = ET.Element(D('response'))
        ET.SubElement(resp, D('href')).text = self._href(fs_path, entry.is_dir)
        propstat = ET.SubElement(resp, D('propstat'))
        prop = ET.SubElement(propstat, D('prop'))
        ET.SubElement(prop, D('displayname')).text = \
            entry.name.decode(errors='replace')
        rtype = ET.SubElement(prop, D('resourcetype'))
        if entry.is_dir:
            ET.SubElement(rtype, D('collection'))
        else:
            ET.SubElement(prop, D('getcontentlength')).text = str(entry.size)
            ET.SubElement(prop, D('getcontenttype')).text = \
                guess_type(entry.name)
        ET.SubElement(prop, D('getlastmodified')).text = \
            format_timestamp(entry.mtime)
        ET.SubElement(prop, D('getetag')).text = etag(entry)
        self.locks.describe(prop)
        ET.SubElement(propstat, D('status')).text = 'HTTP/1.1 200 OK'
        return resp

    def propfind(self, path):
        depth = self.request.headers.get('Depth', 'infinity').strip().lower()
        if depth not in ('0', '1'):
            error = ET.Element(D('error'))
            ET.SubElement(error, D('propfind-finite-depth'))
            return self._send_xml(error, status=403)
        # Whatever was asked for, every property we have is returned
        self._xml_body()
        try:
            entry = stat_entry(self.fs_path, os.path.basename(self.fs_path))
            children = []
            if entry.is_dir and depth == '1':
                children = list_dir(self.fs_path,
                                    hide_macos_metadata=self.hide_macos_metadata)
        except OSError as ex:
            raise http_error(ex)
        multistatus = ET.Element(D('multistatus'))
        multistatus.append(self._prop_response(self.fs_path, entry))
        for child in children:
            child_path = os.path.join(self.fs_path, child.name)
            multistatus.append(self._prop_response(child_path, child))
        return self._send_xml(multistatus, status=207)

    def put(self, path):
        if self._discard:
            self.set_status(201)
            return
        if self._upload_error:
            raise http_error(self._upload_error)
        try:
            self._end_upload(True)
        except OSError as ex:
            raise http_error(ex)
        debug1('stored %s\n' % path_msg(self.fs_path))
        self.set_status(204 if self._upload_existed else 201)

    def delete(self, path):
        if self.fs_path == self.root:
            raise HTTPError(403)
        try:
            if S_ISDIR(os.lstat(self.fs_path).st_mode):
                os.rmdir(self.fs_path)
            else:
                os.unlink(self.fs_path)
        except OSError as ex:
            raise http_error(ex)
        self.set_status(204)

    def mkcol(self, path):
        if self._body_size:
            raise HTTPError(415)
        if os.path.lexists(self.fs_path):
            raise HTTPError(405)
        if not os.path.isdir(os.path.dirname(self.fs_path)):
            raise HTTPError(409)
        try:
            os.mkdir(self.fs_path)
        except OSError as ex:
            raise http_error(ex)
        self.set_status(201)

    def _destination(self):
        dest = self.request.headers.get('Destination')
        if not dest:
            raise HTTPError(400, log_message='missing Destination header')
        dest = self._translate(unquote_to_bytes(urlsplit(dest).path))
        if self._hidden(dest):
            raise HTTPError(403, log_message='refusing to create %s'
                            % path_msg(dest))
        return dest

    def move(self, path):
        src = self.fs_path
        dest = self._destination()
        overwrite = self.request.headers.get('Overwrite', 'T').strip() != 'F'
        if src == self.root or dest == self.root:
            raise HTTPError(403)
        if not os.path.lexists(src):
            raise HTTPError(404)
        if dest == src or is_under(dest, src):
            raise HTTPError(403)
        existed = os.path.lexists(dest)
        if existed and not overwrite:
            raise HTTPError(412)
        if not os.path.isdir(os.path.dirname(dest)):
            raise HTTPError(409)
        try:
            if existed:
                if S_ISDIR(os.lstat(dest).st_mode):
                    os.rmdir(dest)
                else:
                    os.unlink(dest)
            os.rename(src, dest)
        except OSError as ex:
            raise http_error(ex)
        debug1('moved %s to %s\n' % (path_msg(src), path_msg(dest)))
        self.set_status(204 if existed else 201)

    def lock(self, path):
        if not self.locks.enabled:
            raise HTTPError(405)
        info = self._xml_body()
        refresh = _token_rx.search(self.request.headers.get('If', ''))
        if info is None and not refresh:
            raise HTTPError(400, log_message='LOCK without lockinfo')
        timeout = parse_timeout(self.request.headers.get('Timeout'))
        depth = self.request.headers.get('Depth', 'infinity').strip().lower()
        token = self.locks.lock(self.fs_path, timeout,
                                refresh and refresh.group(1))
        scope = 'exclusive'
        owner = None
        if info is not None:
            if info.find('%s/%s' % (D('lockscope'), D('shared'))) is not None:
                scope = 'shared'
            owner = info.find(D('owner'))

        prop = ET.Element(D('prop'))
        active = ET.SubElement(ET.SubElement(prop, D('lockdiscovery')),
                               D('activelock'))
        ET.SubElement(ET.SubElement(active, D('locktype')), D('write'))
        ET.SubElement(ET.SubElement(active, D('lockscope')), D(scope))
        ET.SubElement(active, D('depth')).text = \
            '0' if depth == '0' else 'infinity'
        if owner is not None:
            active.append(owner)
        ET.SubElement(active, D('timeout')).text = timeout
        ET.SubElement(ET.SubElement(active, D('locktoken')),
                      D('href')).text = token
        ET.SubElement(ET.SubElement(active, D('lockroot')),
                      D('href')).text = self._href(self.fs_path, False)
        self.set_header('Lock-Token', '<%s>' % token)
        debug1('granted %s on %s\n' % (token, path_msg(self.fs_path)))
        return self._send_xml(prop)

    def unlock(self, path):
        if not self.locks.enabled:
            raise HTTPError(405)
        token = _token_rx.search(self.request.headers.get('Lock-Token', ''))
        if not token:
            raise HTTPError(400, log_message='UNLOCK without Lock-Token')
        self.locks.unlock(self.fs_path, token.group(1))
        self.set_status(204)


def _log_request(handler):
    req = handler.request
    debug1('%d %s %s (%.1fms)\n' % (handler.get_status(), req.method, req.uri,
                                    1000.0 * req.request_time()))


def make_app(config, tracker=None):
    """Return the tornado Application serving config.root."""
    handler_args = dict(root=os.path.realpath(config.root),
                        locks=make_lock_system(config.locking),
                        tracker=tracker or RequestTracker(),
                        hide_macos_metadata=config.hide_macos_metadata)
    handlers = [(r'(?P<path>/.*)', DavHandler, handler_args)]
    return tornado.web.Application(handlers, log_function=_log_request)


async def serve(config, *, sockets=None, session=None, handle_signals=True):
    """Serve config.root until session (if any) expires or SIGINT or
    SIGTERM arrives, and return that signal's number, or None after
    expiry.  Requests still in flight at that point get
    config.shutdown_grace seconds to finish.

    """
    tracker = RequestTracker()
    server = HTTPServer(make_app(config, tracker),
                        max_body_size=config.max_body_size)
    if sockets is None:
        sockets = bind_sockets(config.port, config.addr)
    server.add_sockets(sockets)
    debug1('serving HTTP on %s:%d\n' % sockets[0].getsockname()[0:2])

    stop = Event()
    stopped_by = []
    def stop_for(sig):
        debug1('signal %d received\n' % sig)
        log('Shutdown requested\n')
        stopped_by.append(sig)
        stop.set()

    tasks = []
    if session:
        async def stop_on_expiry():
            await session.expired.wait()
            stop.set()
        tasks.append(asyncio.ensure_future(session.run()))
        tasks.append(asyncio.ensure_future(stop_on_expiry()))

    loop = asyncio.get_running_loop()
    signals = []
    if handle_signals:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_for, sig)
                signals.append(sig)
            except (NotImplementedError, RuntimeError, ValueError) as ex:
                debug1('cannot handle signal %d: %s\n' % (sig, ex))
    try:
        await stop.wait()
        debug1('shutting down\n')
        server.stop()
        if not await tracker.wait_idle(config.shutdown_grace):
            log('abandoning %d request(s) still in flight\n' % tracker.active)
        await gen.with_timeout(timedelta(seconds=0.5),
                               server.close_all_connections())
    except gen.TimeoutError:
        debug1('some connections did not close\n')
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        for task in tasks:
            task.cancel()
    return stopped_by[0] if stopped_by else None
