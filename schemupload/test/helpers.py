"""Minimal h11 based HTTP client used by the service tests."""

import asyncio
import json
import uuid

import h11


TEST_MAX_FILE_SIZE = 64 * 1024
TEST_MAX_REQUEST_SIZE = 128 * 1024


class HTTPResult:
    def __init__(self, status_code, headers, body):
        self.status_code = status_code
        self.headers = headers
        self.body = body

    def json(self):
        return json.loads(self.body.decode('utf-8'))

    @property
    def text(self):
        return self.body.decode('utf-8')


async def http_request(port, method, target, headers=None, body=b''):
    """Sends one request on a fresh connection and reads the full response"""
    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    conn = h11.Connection(h11.CLIENT)
    req_headers = [('Host', '127.0.0.1:%s' % port), ('Connection', 'close')]
    if headers is not None:
        req_headers.extend(headers)
    if method in ['POST', 'PUT'] or len(body) > 0:
        req_headers.append(('Content-Length', str(len(body))))

    try:
        writer.write(conn.send(h11.Request(method=method, target=target, headers=req_headers)))
        if len(body) > 0:
            writer.write(conn.send(h11.Data(data=body)))
        writer.write(conn.send(h11.EndOfMessage()))
        await writer.drain()
    except ConnectionError:
        # the server may answer and close before the whole body was sent
        pass

    response = None
    data = b''
    try:
        while True:
            event = conn.next_event()
            if event is h11.NEED_DATA:
                chunk = await asyncio.wait_for(reader.read(65536), timeout=10)
                conn.receive_data(chunk)
                continue
            if isinstance(event, h11.Response):
                response = event
            elif isinstance(event, h11.Data):
                data += event.data
            elif isinstance(event, (h11.EndOfMessage, h11.ConnectionClosed)):
                break
    finally:
        writer.close()

    headers = {name.decode('ascii'): value.decode('latin-1') for name, value in response.headers}
    return HTTPResult(response.status_code, headers, data)


def multipart_body(filename, content, fields=None, field_name='file'):
    """Returns (content_type, body) of a multipart/form-data request with one file"""
    boundary = '----schemupload' + uuid.uuid4().hex
    parts = []
    for name, value in (fields or {}).items():
        parts.append(
            ('--%s\r\nContent-Disposition: form-data; name="%s"\r\n\r\n%s\r\n' % (boundary, name, value)).encode('utf-8')
        )
    parts.append(
        ('--%s\r\nContent-Disposition: form-data; name="%s"; filename="%s"\r\n'
         'Content-Type: application/octet-stream\r\n\r\n' % (boundary, field_name, filename)).encode('utf-8')
        + content + b'\r\n'
    )
    parts.append(('--%s--\r\n' % boundary).encode('ascii'))
    return 'multipart/form-data; boundary=%s' % boundary, b''.join(parts)


async def upload(port, filename, content, fields=None, target='/api'):
    content_type, body = multipart_body(filename, content, fields)
    return await http_request(port, 'POST', target, headers=[('Content-Type', content_type)], body=body)




async def wait_until(predicate, timeout=5):
    """Polls predicate until it holds, the service cleans up on its own thread"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True
