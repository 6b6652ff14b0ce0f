import json
import asyncio
import datetime
import email.utils
import urllib.parse

import h11

from schemupload import logger
from schemupload._version import __version__
from schemupload.common.target import UniTarget
from schemupload.common.connection import UniConnection
from schemupload.common.exceptions import SchemUploadError
from schemupload.protocol.http.routing import RouteTable
from schemupload.server import UniServer

SERVER_IDENT = " ".join(
    [f"schemupload/{__version__}", h11.PRODUCT_ID]
).encode("ascii")


class HTTPWrapper:
    def __init__(self, client_id, stream:UniConnection, log_callback=None):
        self.log_callback = log_callback
        self.client_id = client_id
        self.stream = stream
        self.conn = h11.Connection(h11.SERVER)

    async def debug(self, *args):
        msg = ' '.join([str(x) for x in args])
        logger.debug(msg)
        if self.log_callback is not None:
            await self.log_callback(msg)

    async def send(self, event):
        # ConnectionClosed is never sent by the handlers, so data is never None here
        assert type(event) is not h11.ConnectionClosed
        data = self.conn.send(event)
        try:
            await self.stream.write(data)
        except BaseException:
            # the peer is gone, nothing else can be sent on this connection
            self.conn.send_failed()
            raise

    async def _read_from_peer(self):
        if self.conn.they_are_waiting_for_100_continue:
            await self.debug("[%s] Sending 100 Continue" % self.client_id)
            go_ahead = h11.InformationalResponse(
                status_code=100, headers=self.basic_headers()
            )
            await self.send(go_ahead)
        try:
            data = await self.stream.read_one()
        except (ConnectionError, OSError) as exc:
            await self.debug('[%s] Error reading from peer: %s' % (self.client_id, exc))
            # They've stopped listening. Not much we can do about it here.
            data = b""
        self.conn.receive_data(data)

    async def next_event(self, timeout = None):
        while True:
            event = self.conn.next_event()
            if event is h11.NEED_DATA:
                if timeout is None:
                    await self._read_from_peer()
                else:
                    await asyncio.wait_for(self._read_from_peer(), timeout = timeout)
                continue
            return event

    async def shutdown_and_clean_up(self, linger_timeout = 2, linger_max = 4*1024*1024):
        # Lingering close: if the peer is still sending a body we refused, read and drop it
        # for a short while so the response is not destroyed by a TCP reset.
        try:
            if self.stream.writer.can_write_eof():
                self.stream.writer.write_eof()
            if self.conn.their_state == h11.SEND_BODY:
                dropped = 0
                while dropped < linger_max:
                    data = await asyncio.wait_for(self.stream.reader.read(65536), timeout = linger_timeout)
                    if data == b'':
                        break
                    dropped += len(data)
        except (asyncio.TimeoutError, ConnectionError, OSError, RuntimeError):
            pass
        finally:
            await self.stream.close()

    def basic_headers(self):
        # HTTP requires these headers in all responses
        return [
            ("Date", self.format_date_time().encode("ascii")),
            ("Server", SERVER_IDENT),
        ]

    @staticmethod
    def format_date_time(dt=None):
        """Generate a RFC 7231 / RFC 9110 IMF-fixdate string"""
        if dt is None:
            dt = datetime.datetime.now(datetime.timezone.utc)
        return email.utils.format_datetime(dt, usegmt=True)


class HTTPServerHandler:
    """
    Base class of the request handlers. One instance serves exactly one request,
    the server calls the do_<METHOD> coroutine matching the request method.
    """
    def __init__(self):
        self._wrapper:HTTPWrapper = None
        self.method:str = None
        self.path:str = None
        self.path_info:str = None
        self.query = {}
        self.headers = []

    def basic_headers(self):
        return [
            ("Date", HTTPWrapper.format_date_time().encode("ascii")),
            ("Server", SERVER_IDENT),
        ]

    def get_header(self, name:str, default = None):
        name = name.lower().encode('ascii')
        for hname, hvalue in self.headers:
            if hname.lower() == name:
                return hvalue.decode('latin-1')
        return default

    @property
    def response_started(self):
        return self._wrapper.conn.our_state != h11.SEND_RESPONSE

    async def run_blocking(self, func, *args):
        """Runs blocking filesystem work on the worker pool of the running loop"""
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    def allowed_methods(self):
        return [name[3:] for name in dir(self) if name.startswith('do_') and callable(getattr(self, name))]

    async def _process_request(self, wrapper:HTTPWrapper, request:h11.Request, path:str, query:str, path_info:str):
        self._wrapper = wrapper
        self.method = request.method.decode("ascii")
        self.headers = request.headers
        self.path = path
        self.path_info = path_info
        self.query = urllib.parse.parse_qs(query)

        func = getattr(self, f"do_{self.method}", None)
        if func is None:
            allow = ', '.join(sorted(self.allowed_methods()))
            return await self.serve_error(405, "Method Not Allowed", headers = [("Allow", allow.encode('ascii'))])

        try:
            await func(request)
        except SchemUploadError as e:
            if self.response_started:
                raise
            # a refused body is not worth draining
            close = e.status_code == 413 or self._wrapper.conn.their_state == h11.SEND_BODY
            await self.serve_error(e.status_code, e.message, close = close)
        except (ConnectionError, h11.RemoteProtocolError):
            raise
        except Exception:
            logger.exception('Unhandled error while serving %s %s' % (self.method, self.path))
            if self.response_started:
                raise
            await self.serve_error(500, "Internal server error")

    async def send_response(self, status_code:int, body:bytes = b'', content_type:str = None, headers = None, close:bool = False):
        res_headers = self.basic_headers()
        if content_type is not None:
            res_headers.append(("Content-Type", content_type.encode("ascii")))
        res_headers.append(("Content-Length", str(len(body)).encode("ascii")))
        if headers is not None:
            res_headers.extend(headers)
        if close is True:
            res_headers.append(("Connection", b"close"))

        await self._wrapper.send(h11.Response(status_code=status_code, headers=res_headers))
        if len(body) > 0 and self.method != 'HEAD':
            await self._wrapper.send(h11.Data(data=body))
        await self._wrapper.send(h11.EndOfMessage())

    async def send_text(self, status_code:int, text:str, **kwargs):
        await self.send_response(status_code, (text + '\n').encode('utf-8'), 'text/plain; charset=utf-8', **kwargs)

    async def send_json(self, status_code:int, payload, **kwargs):
        body = json.dumps(payload, ensure_ascii=False).encode('utf-8')
        await self.send_response(status_code, body, 'application/json; charset=utf-8', **kwargs)

    async def serve_error(self, status_code:int, message:str, headers = None, close:bool = False):
        try:
            await self.send_text(status_code, message, headers = headers, close = close)
        except (ConnectionError, OSError, h11.LocalProtocolError) as e:
            logger.debug("Error serving error response: %s" % e)


class JSONAPIHandler(HTTPServerHandler):
    """Handlers on the /api routes answer errors with a {"error": msg} body"""
    async def serve_error(self, status_code:int, message:str, headers = None, close:bool = False):
        try:
            await self.send_json(status_code, {"error": message}, headers = headers, close = close)
        except (ConnectionError, OSError, h11.LocalProtocolError) as e:
            logger.debug("Error serving error response: %s" % e)


class HTTPServer:
    def __init__(self, routes:RouteTable, target:UniTarget, max_workers:int = 32, idle_timeout:int = 120, log_callback=None):
        self.log_callback = log_callback
        self.target = target
        self.routes = routes
        self.idle_timeout = idle_timeout
        self.worker_slots = asyncio.Semaphore(max_workers)

        self.server:UniServer = None
        self.clients = {}
        self.id_counter = 0

    async def debug(self, *args):
        msg = ' '.join([str(x) for x in args])
        logger.debug(msg)
        if self.log_callback is not None:
            await self.log_callback(msg)

    async def listen(self):
        self.server = UniServer(self.target)
        return await self.server.listen()

    async def terminate(self):
        if self.server is not None:
            self.server.close()
        for client_id in list(self.clients.keys()):
            task, connection = self.clients.pop(client_id)
            task.cancel()
            await connection.close()

    async def __dispatch(self, wrapper:HTTPWrapper, request:h11.Request):
        raw_target = request.target.decode('latin-1')
        url_parts = urllib.parse.urlsplit(raw_target)
        path = url_parts.path or '/'
        route, path_info = self.routes.resolve(path)
        await self.debug('[%s] %s %s -> %s' % (wrapper.client_id, request.method.decode('ascii'), raw_target, route))
        if route is None:
            handler = HTTPServerHandler()
            handler._wrapper = wrapper
            handler.method = request.method.decode('ascii')
            return await handler.serve_error(404, "Not found")

        handler = route.handler_factory()
        await handler._process_request(wrapper, request, path, url_parts.query, path_info)

    async def __drain_request_body(self, wrapper:HTTPWrapper):
        while wrapper.conn.their_state == h11.SEND_BODY:
            event = await wrapper.next_event(timeout = self.idle_timeout)
            if type(event) is h11.ConnectionClosed:
                break

    async def __handle_connection(self, client_id, connection:UniConnection):
        wrapper = HTTPWrapper(client_id, connection, log_callback=self.log_callback)
        await self.debug('Server: New client connected with id %s from %s' % (client_id, connection.get_peer()))
        try:
            while True:
                states = wrapper.conn.states
                if states[h11.CLIENT] in [h11.MUST_CLOSE, h11.CLOSED] or states[h11.SERVER] in [h11.MUST_CLOSE, h11.CLOSED]:
                    break

                if states == {h11.CLIENT: h11.DONE, h11.SERVER: h11.DONE}:
                    wrapper.conn.start_next_cycle()
                    continue

                if states == {h11.CLIENT: h11.SEND_BODY, h11.SERVER: h11.DONE}:
                    # the handler answered without consuming the body
                    await self.__drain_request_body(wrapper)
                    continue

                if states != {h11.CLIENT: h11.IDLE, h11.SERVER: h11.IDLE}:
                    await self.debug('[%s] Server: Connection state not idle %s' % (client_id, states))
                    break

                try:
                    event = await wrapper.next_event(timeout = self.idle_timeout)
                except asyncio.TimeoutError:
                    await self.debug('[%s] Server: idle timeout' % client_id)
                    break
                except h11.RemoteProtocolError as exc:
                    await self.debug('[%s] Server: protocol error %s' % (client_id, exc))
                    if wrapper.conn.our_state == h11.SEND_RESPONSE:
                        handler = HTTPServerHandler()
                        handler._wrapper = wrapper
                        await handler.serve_error(exc.error_status_hint, "Bad request", close = True)
                    break

                if type(event) is h11.ConnectionClosed:
                    break
                if type(event) is not h11.Request:
                    await self.debug('[%s] Server: unknown event type %s' % (client_id, type(event)))
                    break

                async with self.worker_slots:
                    await self.__dispatch(wrapper, event)

        except asyncio.CancelledError:
            pass
        except Exception as exc:
            await self.debug('[%s] Error during response handler: %r' % (client_id, exc))
        finally:
            self.clients.pop(client_id, None)
            await wrapper.shutdown_and_clean_up()
            await self.debug('[%s] Server: connection closed' % client_id)

    async def serve(self):
        if self.server is None:
            _, err = await self.listen()
            if err is not None:
                raise err
        async for connection in self.server.serve():
            client_id = self.id_counter
            self.id_counter += 1
            task = asyncio.create_task(self.__handle_connection(client_id, connection))
            self.clients[client_id] = (task, connection)
