import os
import html
import mimetypes
import urllib.parse

import h11

from schemupload import logger
from schemupload.protocol.http.httpserver import HTTPServerHandler


class StaticAssetHandler(HTTPServerHandler):
    """
    Catch-all handler serving the web directory.

    Files are sent as-is, directories get a generated listing. There is no
    welcome file handling, a directory request never turns into index.html.
    """

    def __init__(self, web_dir:str, dir_allowed:bool = True, chunk_size:int = 64*1024):
        super().__init__()
        self.web_dir = os.path.abspath(web_dir)
        self.dir_allowed = dir_allowed
        self.chunk_size = chunk_size

    def _sanitize_path(self, path_request:str):
        """
        Maps a decoded request path onto the web directory.
        Returns None if the path is unsafe or escapes the directory.
        """
        if not path_request:
            return self.web_dir

        normalized_path = path_request.replace('\\', '/')
        path_components = []
        for component in normalized_path.split('/'):
            if not component or component == '.':
                continue
            if component == '..':
                continue
            if '\x00' in component:
                return None
            path_components.append(component)

        safe_path = os.path.abspath(os.path.join(self.web_dir, *path_components))
        try:
            if os.path.commonpath([safe_path, self.web_dir]) != self.web_dir:
                return None
        except ValueError:
            return None
        return safe_path

    def _get_mime_type(self, filepath:str):
        mime_type, _ = mimetypes.guess_type(filepath)
        if mime_type is None:
            return 'application/octet-stream'
        if mime_type.startswith('text/') or mime_type in ['application/javascript', 'application/json']:
            return mime_type + '; charset=utf-8'
        return mime_type

    async def do_GET(self, event):
        try:
            path = urllib.parse.unquote(self.path, errors='strict')
        except UnicodeDecodeError:
            return await self.serve_error(400, "Invalid path")

        safe_path = self._sanitize_path(path)
        if safe_path is None:
            return await self.serve_error(400, "Invalid path")

        if os.path.isdir(safe_path):
            if self.dir_allowed is False:
                return await self.serve_error(403, "Directory listing not allowed")
            return await self._serve_directory_listing(safe_path)
        if os.path.isfile(safe_path):
            return await self._serve_file(safe_path)
        await self.serve_error(404, "Not found")

    async def do_HEAD(self, event):
        await self.do_GET(event)

    async def _serve_file(self, file_path:str):
        try:
            f = open(file_path, 'rb')
        except FileNotFoundError:
            return await self.serve_error(404, "Not found")
        except OSError:
            logger.exception('Failed to open static file %s' % file_path)
            return await self.serve_error(500, "Internal server error")

        with f:
            file_size = os.fstat(f.fileno()).st_size
            headers = self.basic_headers()
            headers.extend([
                ("Content-Type", self._get_mime_type(file_path).encode('ascii')),
                ("Content-Length", str(file_size).encode('ascii')),
            ])
            await self._wrapper.send(h11.Response(status_code=200, headers=headers))
            if self.method != 'HEAD':
                bytes_remaining = file_size
                while bytes_remaining > 0:
                    chunk = await self.run_blocking(f.read, min(self.chunk_size, bytes_remaining))
                    if not chunk:
                        raise ConnectionError('Static file %s shrank while it was being sent' % file_path)
                    await self._wrapper.send(h11.Data(data=chunk))
                    bytes_remaining -= len(chunk)
            await self._wrapper.send(h11.EndOfMessage())

    def _get_relative_path(self, absolute_path:str):
        rel_path = os.path.relpath(absolute_path, self.web_dir)
        if rel_path == '.':
            return '/'
        return '/' + rel_path.replace(os.sep, '/') + '/'

    def _generate_directory_listing(self, dir_path:str):
        rel_path = self._get_relative_path(dir_path)
        rows = []
        if rel_path != '/':
            parent_path = '/'.join(rel_path.rstrip('/').split('/')[:-1]) + '/'
            rows.append('<tr><td><a href="%s">../</a></td><td>-</td></tr>' % html.escape(parent_path))

        for item in sorted(os.listdir(dir_path), key=str.lower):
            item_path = os.path.join(dir_path, item)
            try:
                if os.path.isdir(item_path):
                    item_url = rel_path + urllib.parse.quote(item) + '/'
                    label = item + '/'
                    size = '-'
                else:
                    item_url = rel_path + urllib.parse.quote(item)
                    label = item
                    size = str(os.path.getsize(item_path))
            except FileNotFoundError:
                continue
            rows.append('<tr><td><a href="%s">%s</a></td><td>%s</td></tr>' % (html.escape(item_url), html.escape(label), size))

        title = html.escape(rel_path)
        return ('<!DOCTYPE html>\n<html>\n<head><meta charset="UTF-8"><title>Directory: %s</title></head>\n'
                '<body>\n<h1>Directory: %s</h1>\n<table>\n<tr><th>Name</th><th>Size</th></tr>\n%s\n</table>\n</body>\n</html>\n') % (title, title, '\n'.join(rows))

    async def _serve_directory_listing(self, dir_path:str):
        try:
            html_content = await self.run_blocking(self._generate_directory_listing, dir_path)
        except OSError:
            logger.exception('Failed to list static directory %s' % dir_path)
            return await self.serve_error(500, "Internal server error")
        await self.send_response(200, html_content.encode('utf-8'), 'text/html; charset=utf-8')
